# Simple pub/sub
import logging

log = logging.getLogger(__name__)

_subs: dict[str, list] = {}

def publish(topic: str, payload=None):
    for h in _subs.get(topic, []):
        try:
            h(payload)
        except Exception:
            # a broken subscriber must not abort the report run
            log.exception("event handler for %s failed", topic)

def subscribe(topic: str, handler):
    _subs.setdefault(topic, []).append(handler)

def unsubscribe(topic: str, handler):
    handlers = _subs.get(topic, [])
    if handler in handlers:
        handlers.remove(handler)
