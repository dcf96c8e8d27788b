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

import unittest
from unittest.mock import MagicMock, patch

from backend.errors import AssistantUnavailableError
from models import gemini
from models import ride_assistant
from models.ride_assistant import ExtractedRideDetails, RouteSuggestions


class RideAssistantTest(unittest.TestCase):

    @patch("models.ride_assistant.gemini.call_predict_with_schema")
    def test_extract_ride_details_cleans_result(self, mock_call):
        mock_call.return_value = ExtractedRideDetails(
            name=" Chembur to VESIT ",
            starting_point=" Chembur ",
            destination="VESIT",
            passenger_limit=7,
        )

        details = ride_assistant.extract_ride_details(
            'Going to "VESIT" from Chembur with six friends'
        )

        self.assertEqual(details.name, "Chembur to VESIT")
        self.assertEqual(details.starting_point, "Chembur")
        self.assertEqual(details.passenger_limit, 4)
        prompt = mock_call.call_args[0][0]
        self.assertIn("'VESIT'", prompt)
        self.assertIs(mock_call.call_args[0][1], ExtractedRideDetails)

    def test_clamp_passenger_limit(self):
        self.assertEqual(ride_assistant.clamp_passenger_limit(None), 2)
        self.assertEqual(ride_assistant.clamp_passenger_limit(1), 2)
        self.assertEqual(ride_assistant.clamp_passenger_limit(3), 3)
        self.assertEqual(ride_assistant.clamp_passenger_limit(9), 4)

    @patch("models.ride_assistant.gemini.call_predict_with_schema")
    def test_extract_ride_details_failure(self, mock_call):
        mock_call.side_effect = gemini.GeminiInvalidResponseException("bad")
        with self.assertRaises(AssistantUnavailableError):
            ride_assistant.extract_ride_details("anything")

    @patch("models.ride_assistant.gemini.call_predict_with_schema")
    def test_extract_ride_details_wrong_type(self, mock_call):
        mock_call.return_value = {"name": "dict instead of model"}
        with self.assertRaises(AssistantUnavailableError):
            ride_assistant.extract_ride_details("anything")

    @patch("models.ride_assistant.gemini.call_predict_with_schema")
    def test_suggest_routes(self, mock_call):
        mock_call.return_value = RouteSuggestions(
            suggested_routes=["Via Sion"], nearby_destinations=["Chembur Camp"]
        )
        result = ride_assistant.suggest_routes("Kurla", "VESIT", auto_status=True)
        self.assertEqual(result.suggested_routes, ["Via Sion"])
        self.assertIn("already found an auto", mock_call.call_args[0][0])

    @patch("models.ride_assistant.gemini.call_predict")
    def test_summarize_sharing_details(self, mock_call):
        mock_call.return_value = "  Three riders heading to VESIT at 9:00.  "
        summary = ride_assistant.summarize_sharing_details("VESIT", "9:00", 3)
        self.assertEqual(summary, "Three riders heading to VESIT at 9:00.")

    @patch("models.ride_assistant.gemini.call_predict")
    def test_summarize_failure(self, mock_call):
        mock_call.side_effect = gemini.GeminiInvalidResponseException()
        with self.assertRaises(AssistantUnavailableError):
            ride_assistant.summarize_sharing_details("VESIT", "9:00", 3)


class GeminiTest(unittest.TestCase):

    @patch("models.gemini.genai.Client")
    def test_call_predict_with_schema_empty_response(self, mock_client_cls):
        response = MagicMock()
        response.parsed = None
        mock_client_cls.return_value.models.generate_content.return_value = response
        with self.assertRaises(gemini.GeminiInvalidResponseException):
            gemini.call_predict_with_schema("q", RouteSuggestions, api_key="k")

    @patch("models.gemini.genai.Client")
    def test_call_predict_returns_text(self, mock_client_cls):
        response = MagicMock()
        response.text = "hello"
        mock_client_cls.return_value.models.generate_content.return_value = response
        self.assertEqual(gemini.call_predict("q", api_key="k"), "hello")
        mock_client_cls.assert_called_once_with(api_key="k")

    @patch("models.gemini.genai.Client")
    def test_missing_api_key_is_an_invalid_response(self, mock_client_cls):
        mock_client_cls.side_effect = ValueError("Missing key inputs argument!")
        with self.assertRaises(gemini.GeminiInvalidResponseException):
            gemini.call_predict("q")
        with self.assertRaises(gemini.GeminiInvalidResponseException):
            gemini.call_predict_with_schema("q", RouteSuggestions)

    @patch("models.gemini.genai.Client")
    def test_assistant_unavailable_without_client(self, mock_client_cls):
        mock_client_cls.side_effect = ValueError("Missing key inputs argument!")
        with self.assertRaises(AssistantUnavailableError):
            ride_assistant.extract_ride_details("Chembur to VESIT")
        with self.assertRaises(AssistantUnavailableError):
            ride_assistant.suggest_routes("Kurla", "VESIT", auto_status=False)


if __name__ == "__main__":
    unittest.main()
