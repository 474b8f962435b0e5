from enum import Enum


class SubscriptionStatus(str, Enum):
    PENDING = "pending"
    ENABLED = "enabled"
    AUTHORIZATION_REVOKED = "authorization_revoked"
    NOT_FOUND_ON_REMOTE = "not_found_on_remote"


class MessageType(str, Enum):
    HANDSHAKE = "webhook_callback_verification"
    NOTIFICATION = "notification"
    REVOCATION = "revocation"


# EventSub subscription type for channel point redemptions
REDEMPTION_ADD_TYPE = "channel.channel_points_custom_reward_redemption.add"
REDEMPTION_ADD_VERSION = "1"
