"""
AWS client for SNS celebration notifications
"""
import boto3
import logging
from typing import Optional

from progress_engine.config import get_settings
from progress_engine.schemas import CelebrationEvent

settings = get_settings()
logger = logging.getLogger(__name__)


class AWSClient:
    """AWS services client wrapper"""

    def __init__(self):
        self.settings = settings
        self._sns_client = None

    @property
    def sns(self):
        """Lazy initialization of SNS client"""
        if self._sns_client is None:
            kwargs = {'region_name': self.settings.AWS_REGION}
            if self.settings.AWS_ACCESS_KEY_ID:
                kwargs['aws_access_key_id'] = self.settings.AWS_ACCESS_KEY_ID
                kwargs['aws_secret_access_key'] = self.settings.AWS_SECRET_ACCESS_KEY
            self._sns_client = boto3.client('sns', **kwargs)
        return self._sns_client

    def reset(self):
        self._sns_client = None

    async def publish_notification(
        self,
        message: str,
        subject: Optional[str] = None,
        attributes: Optional[dict] = None
    ) -> Optional[str]:
        """
        Publish notification to SNS topic

        Args:
            message: Notification message
            subject: Message subject (optional)
            attributes: Message attributes (optional)

        Returns:
            Message ID if published successfully
        """
        if not self.settings.SNS_TOPIC_ARN:
            logger.debug("SNS_TOPIC_ARN not configured, skipping notification")
            return None

        try:
            kwargs = {
                'TopicArn': self.settings.SNS_TOPIC_ARN,
                'Message': message,
            }

            if subject:
                kwargs['Subject'] = subject

            if attributes:
                kwargs['MessageAttributes'] = {
                    k: {'DataType': 'String', 'StringValue': str(v)}
                    for k, v in attributes.items()
                }

            response = self.sns.publish(**kwargs)
            message_id = response['MessageId']

            logger.info(f"Published SNS notification: {message_id}")
            return message_id

        except Exception as e:
            logger.error(f"Error publishing notification: {str(e)}")
            return None

    async def publish_celebration(self, celebration: CelebrationEvent) -> Optional[str]:
        """Hand a celebration to the delivery channel"""
        return await self.publish_notification(
            message=celebration.model_dump_json(),
            subject=celebration.title,
            attributes={
                'user_id': celebration.userId,
                'event_type': celebration.type.value,
                'celebration_id': celebration.id,
                'priority': celebration.priority.value,
            }
        )


# Global instance
aws_client = AWSClient()
