from . import payfast, paypal

__all__ = ["payfast", "paypal"]
