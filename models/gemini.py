# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

import time
import logging
from google import genai
from google.genai import types
from models import api_config
from typing import Type, TypeVar

logger = logging.getLogger(__name__)

API_KEY_LOGGING_MESSAGE = "Ran with user-specified API key"
QUERY_RESPONSE_MAX_OUTPUT_TOKENS = 2000

T = TypeVar("T")


class GeminiInvalidResponseException(Exception):
    pass


def _client(api_key: str | None) -> genai.Client:
    if not api_key:
        api_key = api_config.DEFAULT_API_KEY
    else:
        logger.info(API_KEY_LOGGING_MESSAGE)
    return genai.Client(api_key=api_key)


def _truncate(prompt: str) -> str:
    return (prompt[:200] + "...") if len(prompt) > 200 else prompt


def call_predict(
    query: str,
    model: str | None = None,
    api_key: str | None = None,
) -> str:
    try:
        client = _client(api_key)
        response = client.models.generate_content(
            model=model or api_config.DEFAULT_MODEL,
            contents=query,
            config=types.GenerateContentConfig(
                temperature=0, max_output_tokens=QUERY_RESPONSE_MAX_OUTPUT_TOKENS
            ),
        )
    except Exception as e:
        logger.warning("Gemini call failed: %s", e)
        raise GeminiInvalidResponseException(str(e)) from e
    if not response.text:
        raise GeminiInvalidResponseException()
    return response.text


def call_predict_with_schema(
    query: str,
    response_schema: Type[T],
    model: str | None = None,
    api_key: str | None = None,
    temperature: float = 0,
) -> T:
    """
    Calls Gemini with a response schema for structured output.

    Raises:
        GeminiInvalidResponseException: the client could not be created, the
            call failed or the response could not be parsed into
            ``response_schema``.
    """
    start_time = time.time()
    logger.info("Calling Gemini with schema, prompt: %r", _truncate(query))
    try:
        client = _client(api_key)
        response = client.models.generate_content(
            model=model or api_config.DEFAULT_MODEL,
            contents=query,
            config={
                "response_mime_type": "application/json",
                "response_schema": response_schema,
                "temperature": temperature,
            },
        )
    except Exception as e:
        logger.warning("Gemini structured call failed: %s", e)
        raise GeminiInvalidResponseException(str(e)) from e
    logger.info("Gemini with schema call took: %.2fs", time.time() - start_time)
    if not response.parsed:
        raise GeminiInvalidResponseException("empty or unparsable response")
    return response.parsed
