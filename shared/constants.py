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

ROOMS_COLLECTION = "sharingRooms"
USERS_COLLECTION = "users"

MIN_PASSENGER_LIMIT = 2
MAX_PASSENGER_LIMIT = 4
DEFAULT_PASSENGER_LIMIT = 2

# Minutes offered by the room creation form.
EXPIRATION_CHOICES_MINUTES = (15, 30, 60)

ROOM_NAME_MAX_LENGTH = 80
LOCATION_MAX_LENGTH = 200
FULL_NAME_MAX_LENGTH = 120
COLLEGE_MAX_LENGTH = 120
MAX_ASSISTANT_QUERY_LENGTH = 1000

DEFAULT_DISCOVERY_LIMIT = 50
MAX_DISCOVERY_LIMIT = 200
