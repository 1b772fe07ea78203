"""
Meditation Course Progression Core

Progression state machine and biometric meditation-test pipeline that gate a
learner's advancement through a multi-level course.
"""

__version__ = "1.0.0"
__author__ = "Meditation Course Team"
__description__ = "Course progression gating and landmark-based meditation assessment"
