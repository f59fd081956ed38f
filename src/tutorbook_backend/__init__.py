'''
TutorBook backend: class, session and attendance management for tutors,
with per-attendance fee resolution and monthly billing reports.
'''
