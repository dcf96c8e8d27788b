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

"""Prompt templates for the ride-sharing assistant."""

EXTRACT_RIDE_DETAILS_PROMPT = """You are an AI assistant that helps users create ride-sharing rooms. Your task is to parse the user's natural language query and extract the details needed to fill out a form.

The user is a college student in {region}, likely traveling to or from a {campus} campus. If a location is ambiguous, assume it is a well-known place in {region} (e.g., 'station' likely means a train station).

User's request: "{query}"

Extract the following information:
1. starting_point: The starting location of the journey.
2. destination: The final destination. If only one location is mentioned and it is not a college, assume it is the destination and the starting point is unknown. If a {campus} college is mentioned, it is almost always the destination.
3. passenger_limit: The total number of people. "with 2 friends" means 3 people total. If not specified, use 2. The maximum is 4.
4. name: A simple, descriptive name for the ride based on the start and end points, e.g., "Ride to VESIT" or "Chembur to VESIT".

If any piece of information is missing, leave the corresponding field empty, except for passenger_limit which defaults to 2.
"""

ROUTE_SUGGESTIONS_PROMPT = """You are a ride-sharing assistant that suggests routes and destinations to users.

Based on the user's starting point and destination, suggest common routes and nearby destinations.
Consider whether the user has already found an auto, and tailor the suggestions accordingly.

Starting Point: {starting_point}
Destination: {destination}
Auto Status: {auto_status}

Respond with "suggested_routes" and "nearby_destinations".
suggested_routes lists possible routes and should focus on major roads or ways to reach the final destination.
nearby_destinations lists commonly traveled destinations within a 5 mile radius of the user's final destination.
"""

SUMMARIZE_SHARING_DETAILS_PROMPT = """You are an AI assistant helping users quickly understand sharing room details.

Summarize the following sharing details in one or two concise, informative sentences. Respond with plain text only.

Destination: {destination}
Start Time: {start_time}
Number of People: {number_of_people}
"""


def make_extract_ride_details_prompt(
    query: str, region: str = "Mumbai", campus: str = "VES (Vivekanand Education Society)"
) -> str:
    return EXTRACT_RIDE_DETAILS_PROMPT.format(
        query=query.replace('"', "'"), region=region, campus=campus
    )


def make_route_suggestions_prompt(
    starting_point: str, destination: str, auto_status: bool
) -> str:
    return ROUTE_SUGGESTIONS_PROMPT.format(
        starting_point=starting_point,
        destination=destination,
        auto_status="already found an auto" if auto_status else "still looking for an auto",
    )


def make_summarize_sharing_details_prompt(
    destination: str, start_time: str, number_of_people: int
) -> str:
    return SUMMARIZE_SHARING_DETAILS_PROMPT.format(
        destination=destination,
        start_time=start_time,
        number_of_people=number_of_people,
    )
