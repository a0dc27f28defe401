from .service import SignupHistogram

__all__ = ["SignupHistogram"]
