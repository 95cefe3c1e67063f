from .lecture_session import LectureSessionRecord

__all__ = [
    'LectureSessionRecord',
]
