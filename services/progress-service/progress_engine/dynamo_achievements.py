"""
DynamoDB operations for achievements

Table structure (single-table design):
- Definitions: PK = DEFINITION#ACHIEVEMENT, SK = {achievementId}
- Progress:    PK = USER#{userId},          SK = ACHIEVEMENT#{achievementId}

totalEarned is a shared counter, always updated with an atomic ADD. It is
bumped in the same transaction that marks a user's completed progress as
rewarded, so each unlock is counted once.
"""
import logging
from datetime import datetime
from typing import List, Optional

from boto3.dynamodb.conditions import Attr

from progress_engine import dynamo
from progress_engine.schemas import AchievementDefinition, AchievementProgress

logger = logging.getLogger(__name__)

PROGRESS_PREFIX = "ACHIEVEMENT#"
COUNTER_FIELDS = {'totalEarned', 'firstEarnedDate', 'lastEarnedDate'}


def build_progress_sk(achievement_id: str) -> str:
    return f"{PROGRESS_PREFIX}{achievement_id}"


# ============= DEFINITIONS =============

def list_definitions() -> List[AchievementDefinition]:
    try:
        items = dynamo.query_partition(dynamo.db_client.gamification_table, dynamo.ACHIEVEMENT_DEFINITION_PK)
        return [AchievementDefinition(**item) for item in items]
    except Exception as e:
        logger.error(f"Error listing achievement definitions: {str(e)}")
        raise


def get_definition(achievement_id: str) -> Optional[AchievementDefinition]:
    response = dynamo.db_client.gamification_table.get_item(
        Key={'PK': dynamo.ACHIEVEMENT_DEFINITION_PK, 'SK': achievement_id}
    )
    if 'Item' not in response:
        return None
    return AchievementDefinition(**dynamo.python_dict(response['Item']))


def put_definition(definition: AchievementDefinition) -> AchievementDefinition:
    """Upsert a definition in place, leaving the earned counters untouched"""
    fields = definition.model_dump(mode='json', exclude=COUNTER_FIELDS)
    data = dynamo.dynamodb_dict(fields)
    cleared = [key for key, value in fields.items() if value is None]

    # Every attribute goes through a placeholder (name, type, ... are reserved words)
    update_parts = ['#totalEarned = if_not_exists(#totalEarned, :zero)']
    expr_names = {'#totalEarned': 'totalEarned'}
    expr_values = {':zero': 0}
    for index, (key, value) in enumerate(data.items()):
        expr_names[f'#f{index}'] = key
        expr_values[f':v{index}'] = value
        update_parts.append(f'#f{index} = :v{index}')

    update_expr = 'SET ' + ', '.join(update_parts)
    if cleared:
        for index, key in enumerate(cleared):
            expr_names[f'#r{index}'] = key
        update_expr += ' REMOVE ' + ', '.join(f'#r{index}' for index in range(len(cleared)))

    response = dynamo.db_client.gamification_table.update_item(
        Key={'PK': dynamo.ACHIEVEMENT_DEFINITION_PK, 'SK': definition.id},
        UpdateExpression=update_expr,
        ExpressionAttributeNames=expr_names,
        ExpressionAttributeValues=expr_values,
        ReturnValues='ALL_NEW'
    )
    logger.info(f"Stored achievement definition {definition.id}")
    return AchievementDefinition(**dynamo.python_dict(response['Attributes']))


def finalize_unlock(user_id: str, achievement_id: str, earned_at: datetime) -> bool:
    """
    Mark a user's completed progress as rewarded and count the unlock on the
    definition, in one transaction.

    Returns:
        True if this call counted the unlock, False if it was already counted
        (or the definition no longer exists)
    """
    table_name = dynamo.db_client.gamification_table.name
    timestamp = earned_at.isoformat()

    transact_items = [
        {
            'Update': {
                'TableName': table_name,
                'Key': {'PK': dynamo.user_pk(user_id), 'SK': build_progress_sk(achievement_id)},
                'UpdateExpression': 'SET rewardsApplied = :true, version = version + :one',
                'ConditionExpression': 'isCompleted = :true AND rewardsApplied = :false',
                'ExpressionAttributeValues': {':true': True, ':false': False, ':one': 1},
            }
        },
        {
            'Update': {
                'TableName': table_name,
                'Key': {'PK': dynamo.ACHIEVEMENT_DEFINITION_PK, 'SK': achievement_id},
                'UpdateExpression': (
                    'ADD totalEarned :one '
                    'SET lastEarnedDate = :now, firstEarnedDate = if_not_exists(firstEarnedDate, :now)'
                ),
                'ConditionExpression': 'attribute_exists(PK)',
                'ExpressionAttributeValues': {':one': 1, ':now': timestamp},
            }
        },
    ]

    client = dynamo.db_client.dynamodb.meta.client
    try:
        client.transact_write_items(TransactItems=transact_items)
    except client.exceptions.TransactionCanceledException as e:
        reasons = [r.get('Code') for r in e.response.get('CancellationReasons', [])]
        logger.info(f"Unlock of {achievement_id} for user {user_id} not counted: {reasons}")
        return False

    logger.debug(f"Counted unlock of {achievement_id} for user {user_id}")
    return True


# ============= USER PROGRESS =============

def get_progress(user_id: str, achievement_id: str) -> Optional[AchievementProgress]:
    response = dynamo.db_client.gamification_table.get_item(
        Key={'PK': dynamo.user_pk(user_id), 'SK': build_progress_sk(achievement_id)}
    )
    if 'Item' not in response:
        return None
    return AchievementProgress(**dynamo.python_dict(response['Item']))


def list_progress(user_id: str) -> List[AchievementProgress]:
    try:
        items = dynamo.query_partition(
            dynamo.db_client.gamification_table,
            dynamo.user_pk(user_id),
            sk_prefix=PROGRESS_PREFIX,
        )
        return [AchievementProgress(**item) for item in items]
    except Exception as e:
        logger.error(f"Error listing achievement progress for user {user_id}: {str(e)}")
        raise


def save_progress(progress: AchievementProgress) -> AchievementProgress:
    """
    Compare-and-swap write of one user's progress on one achievement.

    Raises:
        VersionConflictError: progress changed since it was read
    """
    expected = progress.version if progress.version > 0 else None
    item = {
        'PK': dynamo.user_pk(progress.userId),
        'SK': build_progress_sk(progress.achievementId),
        **progress.model_dump(mode='json', exclude={'version'}),
    }
    stored = dynamo.put_with_version(dynamo.db_client.gamification_table, item, expected)
    return progress.model_copy(update={'version': stored['version']})


def scan_completed_progress(since: Optional[datetime] = None) -> List[AchievementProgress]:
    """All completed achievement progress items, optionally completed at/after `since`"""
    condition = Attr('SK').begins_with(PROGRESS_PREFIX) & Attr('isCompleted').eq(True)
    if since is not None:
        condition = condition & Attr('completedAt').gte(since.isoformat().replace('+00:00', 'Z'))
    items = dynamo.scan_all(dynamo.db_client.gamification_table, condition)
    return [AchievementProgress(**item) for item in items]
