"""Audio publisher module for pub/sub event publishing."""

import logging
from pubsub import pub
from ..models.events import AudioChunkEvent

logger = logging.getLogger(__name__)


def _chunk_message_spec(event: AudioChunkEvent) -> None:
    """Message data carried on the audio chunk topic."""


class AudioPublisher:
    """Publishes captured audio chunks using pubsub.pub."""

    def __init__(self, topic: str = "audio.chunk"):
        """Initialize audio publisher.

        Args:
            topic: Pub/sub topic name for audio chunk events
        """
        self.topic = topic
        # Define the topic up front so publishing works before anyone subscribes
        pub.getDefaultTopicMgr().getOrCreateTopic(topic, _chunk_message_spec)
        logger.info(f"AudioPublisher initialized with topic: {topic}")

    def publish_audio_chunk(self, audio_event: AudioChunkEvent) -> None:
        """Publish an audio chunk event to the pub/sub topic.

        Args:
            audio_event: AudioChunkEvent to publish
        """
        pub.sendMessage(self.topic, event=audio_event)
