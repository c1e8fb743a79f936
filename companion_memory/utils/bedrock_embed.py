"""
Amazon Bedrock embedding client wrapper with retry logic and error handling.
"""

import json
import random
import time
from typing import Any, Dict, List

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockEmbedConfig
from .logging_config import get_logger

logger = get_logger(__name__)

COHERE_DIMENSION = 1024


class BedrockEmbedError(Exception):
    """Custom exception for Bedrock embedding errors."""
    pass


class BedrockEmbed:
    """Amazon Bedrock embedding client (Titan or Cohere) with retries."""

    def __init__(self, config: BedrockEmbedConfig):
        """
        Initialize Bedrock embedding client.

        Args:
            config: BedrockEmbedConfig instance with connection parameters

        Raises:
            BedrockEmbedError: If a Cohere model is configured with an unsupported dimension
        """
        self.config = config
        self.model_id = config.model_id
        self.dimension = config.dimension

        if self._family == 'cohere' and self.dimension != COHERE_DIMENSION:
            raise BedrockEmbedError(f'Cohere models only support {COHERE_DIMENSION} dimensions, got {self.dimension}')

        self.bedrock = boto3.client(service_name='bedrock-runtime', region_name=config.region)

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id}')

    @property
    def _family(self) -> str:
        model = self.model_id.lower()
        if 'titan' in model:
            return 'titan'
        if 'cohere' in model:
            return 'cohere'
        return 'unsupported'

    def _call_with_retry(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Make a Bedrock API call with exponential backoff and jitter.

        Raises:
            BedrockEmbedError: If all retry attempts fail
        """
        body = json.dumps(data)

        for attempt in range(self.config.retry_attempts):
            try:
                response = self.bedrock.invoke_model(body=body,
                                                     modelId=self.model_id,
                                                     accept='application/json',
                                                     contentType='application/json')
                return json.loads(response.get('body').read())

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock Embed attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock Embed: {e}')
                raise BedrockEmbedError(f'Unexpected Bedrock Embed error: {e}')

        raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts')

    def _embed(self, text: str, input_type: str) -> List[float]:
        if not text or not text.strip():
            logger.warning(f'Empty text provided for {input_type} embedding')
            return [0.0] * self.dimension

        family = self._family
        if family == 'titan':
            response = self._call_with_retry({'inputText': text, 'dimensions': self.dimension})
            return response.get('embedding') or [0.0] * self.dimension

        if family == 'cohere':
            response = self._call_with_retry({'input_type': input_type, 'texts': [text]})
            embeddings = response.get('embeddings') or []
            return embeddings[0] if embeddings else [0.0] * self.dimension

        raise BedrockEmbedError(f'Unsupported embedding model: {self.model_id}')

    def embed_document(self, text: str) -> List[float]:
        """
        Embed a passage that will be stored in long-term memory.

        Raises:
            BedrockEmbedError: If embedding generation fails
        """
        return self._embed(text, 'search_document')

    def embed_query(self, text: str) -> List[float]:
        """
        Embed a retrieval query (the recent transcript window).

        Raises:
            BedrockEmbedError: If embedding generation fails
        """
        return self._embed(text, 'search_query')

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock embedding service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            return len(self.embed_document('test')) == self.dimension

        except Exception as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False
