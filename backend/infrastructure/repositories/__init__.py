from .subscription_repository import SqlAlchemySubscriptionRepository

__all__ = ["SqlAlchemySubscriptionRepository"]
