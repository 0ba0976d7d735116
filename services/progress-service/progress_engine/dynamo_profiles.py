"""
DynamoDB operations for gamification profiles

- PK: USER#{userId}
- SK: PROFILE
"""
import logging
from typing import Optional

from progress_engine import dynamo
from progress_engine.schemas import GamificationProfile

logger = logging.getLogger(__name__)


def get_profile(user_id: str) -> Optional[GamificationProfile]:
    try:
        response = dynamo.db_client.gamification_table.get_item(
            Key={'PK': dynamo.user_pk(user_id), 'SK': dynamo.PROFILE_SK}
        )
        if 'Item' not in response:
            return None
        return GamificationProfile(**dynamo.python_dict(response['Item']))
    except Exception as e:
        logger.error(f"Error getting profile for user {user_id}: {str(e)}")
        raise


def save_profile(profile: GamificationProfile) -> GamificationProfile:
    """
    Persist a profile guarded by the version it was read with.

    Raises:
        VersionConflictError: profile changed since it was read
    """
    expected = profile.version if profile.version > 0 else None
    item = {
        'PK': dynamo.user_pk(profile.userId),
        'SK': dynamo.PROFILE_SK,
        **profile.model_dump(mode='json', exclude={'version'}),
    }
    stored = dynamo.put_with_version(dynamo.db_client.gamification_table, item, expected)
    return profile.model_copy(update={'version': stored['version']})
