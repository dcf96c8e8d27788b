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

"""Structured-output assistant flows used by the room forms."""

import logging
from typing import List

from pydantic import BaseModel, Field

from backend.errors import AssistantUnavailableError
from models import gemini
from models import prompts
from shared.constants import (
    DEFAULT_PASSENGER_LIMIT,
    MAX_PASSENGER_LIMIT,
    MIN_PASSENGER_LIMIT,
)

logger = logging.getLogger(__name__)


class ExtractedRideDetails(BaseModel):
    name: str = Field(default="", description="A short name for the ride.")
    starting_point: str = Field(default="", description="The starting location.")
    destination: str = Field(default="", description="The destination.")
    passenger_limit: int = Field(
        default=DEFAULT_PASSENGER_LIMIT,
        description="Total number of people including the user, 1 to 4.",
    )


class RouteSuggestions(BaseModel):
    suggested_routes: List[str] = Field(default_factory=list)
    nearby_destinations: List[str] = Field(default_factory=list)


def clamp_passenger_limit(value: int | None) -> int:
    if not value:
        return DEFAULT_PASSENGER_LIMIT
    return max(MIN_PASSENGER_LIMIT, min(MAX_PASSENGER_LIMIT, int(value)))


def extract_ride_details(
    query: str, api_key: str | None = None, model: str | None = None
) -> ExtractedRideDetails:
    """
    Parse a free-text ride request into room form fields.

    The passenger limit is clamped into the range a room accepts so the
    result can be submitted as-is.
    """
    prompt = prompts.make_extract_ride_details_prompt(query)
    try:
        details = gemini.call_predict_with_schema(
            prompt, ExtractedRideDetails, model=model, api_key=api_key
        )
    except gemini.GeminiInvalidResponseException as e:
        raise AssistantUnavailableError("extract_ride_details") from e
    if not isinstance(details, ExtractedRideDetails):
        raise AssistantUnavailableError("extract_ride_details")
    return details.model_copy(
        update={
            "name": details.name.strip(),
            "starting_point": details.starting_point.strip(),
            "destination": details.destination.strip(),
            "passenger_limit": clamp_passenger_limit(details.passenger_limit),
        }
    )


def suggest_routes(
    starting_point: str,
    destination: str,
    auto_status: bool,
    api_key: str | None = None,
    model: str | None = None,
) -> RouteSuggestions:
    prompt = prompts.make_route_suggestions_prompt(
        starting_point, destination, auto_status
    )
    try:
        suggestions = gemini.call_predict_with_schema(
            prompt, RouteSuggestions, model=model, api_key=api_key
        )
    except gemini.GeminiInvalidResponseException as e:
        raise AssistantUnavailableError("suggest_routes") from e
    if not isinstance(suggestions, RouteSuggestions):
        raise AssistantUnavailableError("suggest_routes")
    return suggestions


def summarize_sharing_details(
    destination: str,
    start_time: str,
    number_of_people: int,
    api_key: str | None = None,
    model: str | None = None,
) -> str:
    prompt = prompts.make_summarize_sharing_details_prompt(
        destination, start_time, number_of_people
    )
    try:
        summary = gemini.call_predict(prompt, model=model, api_key=api_key)
    except Exception as e:
        logger.warning("Summary generation failed: %s", e)
        raise AssistantUnavailableError("summarize_sharing_details") from e
    return summary.strip()
