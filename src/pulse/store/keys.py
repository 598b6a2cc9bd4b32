"""Key layout of the shared store.

experiments:active                      hash feature_key -> experiment JSON
experiment:users:<feature_key>          set of enrolled uids
user:<uid>:ips                          set of addresses seen for a user
user:<uid>:current_ip                   last address seen for a user
ip:<address>:users                      set of uids seen on an address
alt_account:<a>:<b>                     first detection time of a pair
alt_account:<a>:<b>:notified:<reason>   pair already reported for reason
alt_accounts:<uid>                      uids correlated with a user
"""

from pulse.core.types import UserId

ACTIVE_EXPERIMENTS = "experiments:active"


def experiment_users(feature_key: str) -> str:
    return f"experiment:users:{feature_key}"


def user_ips(uid: UserId) -> str:
    return f"user:{uid}:ips"


def user_current_ip(uid: UserId) -> str:
    return f"user:{uid}:current_ip"


def ip_users(address: str) -> str:
    return f"ip:{address}:users"


def alt_pair(uid: UserId, other: UserId) -> str:
    return f"alt_account:{uid}:{other}"


def alt_notified(uid: UserId, other: UserId, reason: str) -> str:
    return f"alt_account:{uid}:{other}:notified:{reason}"


def alt_accounts(uid: UserId) -> str:
    return f"alt_accounts:{uid}"
