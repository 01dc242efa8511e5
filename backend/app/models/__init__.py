from .auth import User, SessionToken
from .security import SecurityEvent, RateLimitBucket
from .nfc import TagBatch, NfcTag, TapEvent
from .identity import Visitor, IdentityClaim, ClaimState, ClaimedBy, Unclaimed
from .lists import MyList, MyListItem
from .preferences import UserPreference

__all__ = [
    'User', 'SessionToken',
    'SecurityEvent', 'RateLimitBucket',
    'TagBatch', 'NfcTag', 'TapEvent',
    'Visitor', 'IdentityClaim', 'ClaimState', 'ClaimedBy', 'Unclaimed',
    'MyList', 'MyListItem',
    'UserPreference',
]
