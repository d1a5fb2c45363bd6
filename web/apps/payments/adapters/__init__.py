from .base import FeeSchedule, ProviderAdapter, ProviderConfig, ProviderError
from .cash import CashOnDeliveryAdapter
from .flooz import FloozAdapter
from .mtn_money import MtnMoneyAdapter
from .orange_money import OrangeMoneyAdapter
from .stub import StubProviderAdapter
from .tmoney import TMoneyAdapter

__all__ = [
    "CashOnDeliveryAdapter",
    "FeeSchedule",
    "FloozAdapter",
    "MtnMoneyAdapter",
    "OrangeMoneyAdapter",
    "ProviderAdapter",
    "ProviderConfig",
    "ProviderError",
    "StubProviderAdapter",
    "TMoneyAdapter",
]
