"""
Amazon Bedrock completion client used to answer as the companion.
"""

import random
import time
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockLLMConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class BedrockLLMError(Exception):
    """Custom exception for Bedrock LLM errors."""
    pass


class BedrockLLM:
    """Turns a finished prompt into a single completion string via the Converse stream API."""

    def __init__(self, config: BedrockLLMConfig):
        """
        Initialize Bedrock LLM client.

        Args:
            config: BedrockLLMConfig instance with connection parameters
        """
        self.config = config
        self.model_id = config.model_id

        self.bedrock_runtime = boto3.client(
            'bedrock-runtime',
            region_name=config.region,
            config=BotoConfig(
                connect_timeout=60,
                read_timeout=300,
                retries={'max_attempts': 0}  # retries are handled in complete()
            ))

        logger.info(f'Initialized Bedrock LLM client with model: {self.model_id}')

    def _read_stream(self, response: Dict[str, Any]) -> str:
        text = []
        for event in response.get('stream') or []:
            if 'contentBlockDelta' in event:
                text.append(event['contentBlockDelta']['delta'].get('text', ''))
            if 'metadata' in event:
                usage = event['metadata'].get('usage', {})
                logger.debug(f'Bedrock LLM usage: {usage}')
        return ''.join(text)

    def complete(self,
                 prompt: str,
                 max_tokens: Optional[int] = None,
                 temperature: Optional[float] = None,
                 stop_sequences: Optional[List[str]] = None) -> str:
        """
        Generate the companion's reply for an assembled prompt.

        Args:
            prompt: Prompt body produced by build_prompt
            max_tokens: Maximum tokens to generate (uses config default if None)
            temperature: Sampling temperature (uses config default if None)
            stop_sequences: Optional stop sequences

        Returns:
            Completion text

        Raises:
            BedrockLLMError: If all retry attempts fail
        """
        inference_config = {
            'maxTokens': max_tokens or self.config.max_tokens,
            'temperature': self.config.temperature if temperature is None else temperature,
            'stopSequences': stop_sequences or [],
        }
        messages = [{'role': 'user', 'content': [{'text': prompt}]}]

        for attempt in range(self.config.retry_attempts):
            try:
                response = self.bedrock_runtime.converse_stream(modelId=self.model_id,
                                                                messages=messages,
                                                                inferenceConfig=inference_config)
                text = self._read_stream(response)
                logger.debug(f'Bedrock LLM response generated (length: {len(text)})')
                return text

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock LLM attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock LLM: {e}')
                raise BedrockLLMError(f'Unexpected Bedrock LLM error: {e}')

        raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts')

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock LLM service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            return len(self.complete("Respond with just 'OK'.", max_tokens=10, temperature=0.0).strip()) > 0

        except Exception as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False
