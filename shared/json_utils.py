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

import re
from typing import Any, Literal

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def snake_to_camel(value: str) -> str:
    head, *rest = value.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def camel_to_snake(value: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", value).lower()


def convert_keys(
    data: Any, direction: Literal["snake_to_camel", "camel_to_snake"]
) -> Any:
    """
    Recursively rename dictionary keys between snake_case and camelCase.

    Document stores written by the web client use camelCase field names while
    the Python side works in snake_case.
    """
    convert = snake_to_camel if direction == "snake_to_camel" else camel_to_snake
    if isinstance(data, dict):
        return {
            convert(key) if isinstance(key, str) else key: convert_keys(value, direction)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [convert_keys(item, direction) for item in data]
    return data
