# file: aqi_backend/alerts.py

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional

from aqi_backend.aqi import aqi_category
from aqi_backend.engine import normalize_city
from aqi_backend.models import AlertSubscription

Notifier = Callable[[str, str], None]


def format_alert(city: str, aqi_value: int, threshold: int) -> str:
    return (
        "AIR QUALITY ALERT!\n"
        f"City: {city}\n"
        f"Current AQI: {aqi_value}\n"
        f"Your threshold: {threshold}\n"
        f"Category: {aqi_category(aqi_value)}\n"
        "Please take necessary precautions!"
    )


def log_notifier(recipient: str, message: str) -> None:
    """Default delivery: write the alert to the log."""
    logging.info(f"Alert for {recipient}: {message!r}")


class AlertDispatcher:
    """
    Receives (city, aqi) pairs and hands matching alerts to the notifier on a
    worker pool, so callers never wait on delivery.
    """

    def __init__(self, subscriptions: Iterable[AlertSubscription] = (),
                 notifier: Notifier = log_notifier,
                 executor: Optional[ThreadPoolExecutor] = None) -> None:
        self.subscriptions = [
            sub.model_copy(update={"city": normalize_city(sub.city)}) for sub in subscriptions
        ]
        self.notifier = notifier
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="aqi-alerts")

    def matching(self, city: str, aqi_value: int) -> List[AlertSubscription]:
        return [sub for sub in self.subscriptions if sub.city == city and aqi_value >= sub.threshold]

    def _deliver(self, subscription: AlertSubscription, aqi_value: int) -> bool:
        message = format_alert(subscription.city, aqi_value, subscription.threshold)
        try:
            self.notifier(subscription.recipient, message)
        except Exception as e:
            logging.error(f"Failed to send alert to {subscription.recipient}: {e}")
            return False
        return True

    def notify(self, city: str, aqi_value: int) -> List[Future]:
        return [self._executor.submit(self._deliver, sub, aqi_value) for sub in self.matching(city, aqi_value)]

    __call__ = notify

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
