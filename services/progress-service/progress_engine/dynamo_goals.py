"""
DynamoDB operations for study goals

- PK: USER#{userId}
- SK: GOAL#{goalId}
"""
import logging
from typing import List, Optional

from boto3.dynamodb.conditions import Attr

from progress_engine import dynamo
from progress_engine.schemas import GoalStatus, StudyGoal

logger = logging.getLogger(__name__)

GOAL_PREFIX = "GOAL#"


def build_goal_sk(goal_id: str) -> str:
    return f"{GOAL_PREFIX}{goal_id}"


def get_goal(user_id: str, goal_id: str) -> Optional[StudyGoal]:
    response = dynamo.db_client.gamification_table.get_item(
        Key={'PK': dynamo.user_pk(user_id), 'SK': build_goal_sk(goal_id)}
    )
    if 'Item' not in response:
        return None
    return StudyGoal(**dynamo.python_dict(response['Item']))


def list_goals(user_id: str) -> List[StudyGoal]:
    try:
        items = dynamo.query_partition(
            dynamo.db_client.gamification_table,
            dynamo.user_pk(user_id),
            sk_prefix=GOAL_PREFIX,
        )
        return [StudyGoal(**item) for item in items]
    except Exception as e:
        logger.error(f"Error listing goals for user {user_id}: {str(e)}")
        raise


def save_goal(goal: StudyGoal) -> StudyGoal:
    """
    Compare-and-swap write of a goal.

    Raises:
        VersionConflictError: goal changed since it was read
    """
    expected = goal.version if goal.version > 0 else None
    item = {
        'PK': dynamo.user_pk(goal.userId),
        'SK': build_goal_sk(goal.id),
        **goal.model_dump(mode='json', exclude={'version'}),
    }
    stored = dynamo.put_with_version(dynamo.db_client.gamification_table, item, expected)
    return goal.model_copy(update={'version': stored['version']})


def scan_goals_by_status(status: GoalStatus) -> List[StudyGoal]:
    """Goals of every user in the given status (used by the expiry sweep)"""
    condition = Attr('SK').begins_with(GOAL_PREFIX) & Attr('status').eq(status.value)
    items = dynamo.scan_all(dynamo.db_client.gamification_table, condition)
    return [StudyGoal(**item) for item in items]
