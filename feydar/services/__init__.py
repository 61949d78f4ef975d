from feydar.services.cache import TTLCache
from feydar.services.name_resolver import NameResolver, namehash
from feydar.services.notifications import (
    BroadcastNotifier,
    DiscordWebhookNotifier,
    NotificationDispatcher,
    NotificationSink,
    PushNotifier,
)
