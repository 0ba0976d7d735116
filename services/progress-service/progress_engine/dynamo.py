"""
DynamoDB access layer for progress-service

Two tables:
- Gamification table (single-table design, PK/SK): profiles, achievement
  progress, goals, celebrations, definitions and leaderboard snapshots
- Ledger table (PK/SK): append-only progress records
"""
import boto3
from boto3.dynamodb.conditions import Key
import logging
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, TypeVar

from progress_engine.config import get_settings
from progress_engine.exceptions import ConcurrencyConflictError, VersionConflictError

settings = get_settings()
logger = logging.getLogger(__name__)

T = TypeVar("T")


class DynamoDBClient:
    """DynamoDB client with lazy initialization"""

    def __init__(self):
        self.settings = settings
        self._dynamodb = None
        self._gamification_table = None
        self._ledger_table = None

    @property
    def dynamodb(self):
        """Lazy initialization of DynamoDB resource"""
        if self._dynamodb is None:
            kwargs = {
                'region_name': self.settings.AWS_REGION,
            }

            # Only use endpoint_url for LocalStack
            if self.settings.DYNAMODB_ENDPOINT:
                kwargs['endpoint_url'] = self.settings.DYNAMODB_ENDPOINT

            if self.settings.DYNAMODB_ENDPOINT and self.settings.AWS_ACCESS_KEY_ID:
                kwargs['aws_access_key_id'] = self.settings.AWS_ACCESS_KEY_ID
                kwargs['aws_secret_access_key'] = self.settings.AWS_SECRET_ACCESS_KEY
                logger.info("Using explicit AWS credentials (LocalStack mode)")
            else:
                logger.info("Using IAM role credentials (AWS/ECS mode)")

            self._dynamodb = boto3.resource('dynamodb', **kwargs)
        return self._dynamodb

    @property
    def gamification_table(self):
        if self._gamification_table is None:
            self._gamification_table = self.dynamodb.Table(self.settings.DYNAMODB_GAMIFICATION_TABLE)
        return self._gamification_table

    @property
    def ledger_table(self):
        if self._ledger_table is None:
            self._ledger_table = self.dynamodb.Table(self.settings.DYNAMODB_LEDGER_TABLE)
        return self._ledger_table

    @property
    def conditional_check_failed(self):
        return self.dynamodb.meta.client.exceptions.ConditionalCheckFailedException

    def reset(self):
        """Drop cached resource and tables (used when credentials/endpoints change, e.g. tests)"""
        self._dynamodb = None
        self._gamification_table = None
        self._ledger_table = None


# Global instance
db_client = DynamoDBClient()


# ============= KEY BUILDERS =============

def user_pk(user_id: str) -> str:
    return f"USER#{user_id}"


PROFILE_SK = "PROFILE"
ACHIEVEMENT_DEFINITION_PK = "DEFINITION#ACHIEVEMENT"
LEADERBOARD_DEFINITION_PK = "DEFINITION#LEADERBOARD"


# ============= TABLE BOOTSTRAP =============

def create_tables_if_not_exist() -> List[str]:
    """
    Create the gamification and ledger tables when missing (LocalStack / tests).

    Returns:
        Names of the tables that were created
    """
    created = []
    existing = db_client.dynamodb.meta.client.list_tables().get('TableNames', [])

    for table_name in (settings.DYNAMODB_GAMIFICATION_TABLE, settings.DYNAMODB_LEDGER_TABLE):
        if table_name in existing:
            continue
        table = db_client.dynamodb.create_table(
            TableName=table_name,
            KeySchema=[
                {'AttributeName': 'PK', 'KeyType': 'HASH'},
                {'AttributeName': 'SK', 'KeyType': 'RANGE'},
            ],
            AttributeDefinitions=[
                {'AttributeName': 'PK', 'AttributeType': 'S'},
                {'AttributeName': 'SK', 'AttributeType': 'S'},
            ],
            BillingMode='PAY_PER_REQUEST'
        )
        table.wait_until_exists()
        created.append(table_name)
        logger.info(f"Created DynamoDB table {table_name}")

    return created


# ============= OPTIMISTIC LOCKING =============

def put_with_version(table, item: Dict[str, Any], expected_version: Optional[int]) -> Dict[str, Any]:
    """
    Write a whole item guarded by its version attribute (compare-and-swap).

    Args:
        table: boto3 Table resource
        item: Full item including PK and SK (python values)
        expected_version: Version read before mutating, None when the item is new

    Returns:
        The stored item with its bumped version

    Raises:
        VersionConflictError: another writer changed the item first
    """
    stored = dict(item)
    stored['version'] = (expected_version or 0) + 1

    kwargs = {'Item': dynamodb_dict(stored)}
    if expected_version is None:
        kwargs['ConditionExpression'] = 'attribute_not_exists(PK)'
    else:
        kwargs['ConditionExpression'] = 'version = :expected_version'
        kwargs['ExpressionAttributeValues'] = {':expected_version': expected_version}

    try:
        table.put_item(**kwargs)
    except db_client.conditional_check_failed:
        logger.warning(f"Version mismatch on {item['PK']}/{item['SK']}: expected {expected_version}")
        raise VersionConflictError(f"Concurrent modification of {item['SK']}")

    return stored


def put_if_absent(table, item: Dict[str, Any]) -> bool:
    """
    Insert an item only if its key is free.

    Returns:
        True if written, False if the key already existed
    """
    try:
        table.put_item(
            Item=dynamodb_dict(item),
            ConditionExpression='attribute_not_exists(PK)'
        )
        return True
    except db_client.conditional_check_failed:
        return False


def retry_on_conflict(operation: Callable[[], T], description: str, max_attempts: Optional[int] = None) -> T:
    """
    Run a read-modify-write operation, re-running it after version conflicts.

    Raises:
        ConcurrencyConflictError: all attempts lost the race
    """
    attempts = max_attempts or settings.MAX_CONFLICT_RETRIES
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except VersionConflictError:
            logger.info(f"Conflict on {description}, attempt {attempt}/{attempts}")

    logger.error(f"Giving up on {description} after {attempts} conflicting attempts")
    raise ConcurrencyConflictError(f"Could not update {description}, retry later")


# ============= QUERIES =============

def query_partition(table, pk: str, sk_prefix: Optional[str] = None, newest_first: bool = False,
                    limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Query all items of a partition (optionally by SK prefix), following pagination"""
    condition = Key('PK').eq(pk)
    if sk_prefix:
        condition = condition & Key('SK').begins_with(sk_prefix)

    kwargs = {'KeyConditionExpression': condition, 'ScanIndexForward': not newest_first}
    items = []
    while True:
        if limit:
            kwargs['Limit'] = limit - len(items)
        response = table.query(**kwargs)
        items.extend(python_dict(item) for item in response.get('Items', []))
        last_key = response.get('LastEvaluatedKey')
        if not last_key or (limit and len(items) >= limit):
            break
        kwargs['ExclusiveStartKey'] = last_key
    return items


def scan_all(table, filter_expression=None) -> List[Dict[str, Any]]:
    """Full table scan following pagination"""
    kwargs = {}
    if filter_expression is not None:
        kwargs['FilterExpression'] = filter_expression

    items = []
    while True:
        response = table.scan(**kwargs)
        items.extend(python_dict(item) for item in response.get('Items', []))
        last_key = response.get('LastEvaluatedKey')
        if not last_key:
            break
        kwargs['ExclusiveStartKey'] = last_key
    return items


# ============= CONVERSION HELPERS =============

def dynamodb_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """Convert Python dict to DynamoDB compatible dict (handles Decimal, drops None)"""
    return {k: dynamodb_value(v) for k, v in data.items() if v is not None}


def dynamodb_value(value: Any) -> Any:
    """Convert Python value to DynamoDB value"""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    elif isinstance(value, dict):
        return dynamodb_dict(value)
    elif isinstance(value, list):
        return [dynamodb_value(item) for item in value]
    return value


def python_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """Convert DynamoDB dict to Python dict (handles Decimal)"""
    return {k: python_value(v) for k, v in data.items()}


def python_value(value: Any) -> Any:
    """Convert DynamoDB value to Python value"""
    if isinstance(value, Decimal):
        return int(value) if value % 1 == 0 else float(value)
    elif isinstance(value, dict):
        return {k: python_value(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [python_value(item) for item in value]
    return value
