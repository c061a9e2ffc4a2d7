import json

from utils.helpers import utcnow

FOLLOWED = 'followed'
UNFOLLOWED = 'unfollowed'

DEFAULT_CHANNEL = 'follows:events'


class EventPublisher:
    """Fire-and-forget follow events over redis pub/sub"""

    def __init__(self, redis_client, logger, channel=DEFAULT_CHANNEL):
        self.redis = redis_client
        self.logger = logger
        self.channel = channel

    def publish(self, event_type, data):
        try:
            message = json.dumps({
                'type': event_type,
                'data': data,
                'timestamp': utcnow().isoformat()
            })
            receivers = self.redis.publish(self.channel, message)
            self.logger.debug(f"Published {event_type} to {receivers} subscriber(s)")
            return True
        except Exception as e:
            self.logger.error(f"Failed to publish {event_type} event: {e}")
            return False

    def followed(self, follower_id, following_id):
        return self.publish(FOLLOWED, {'follower_id': follower_id, 'following_id': following_id})

    def unfollowed(self, follower_id, following_id):
        return self.publish(UNFOLLOWED, {'follower_id': follower_id, 'following_id': following_id})
