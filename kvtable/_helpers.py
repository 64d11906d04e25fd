# Copyright 2023 Google LLC
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
#
"""
Helper functions used in various places in the library.
"""
from __future__ import annotations

from typing import Any, TYPE_CHECKING

from google.api_core import exceptions as core_exceptions
from kvtable.exceptions import RetryExceptionGroup

if TYPE_CHECKING:
    from kvtable.policies import RPCBackoffPolicy
    from kvtable.policies import RPCRetryPolicy


def _make_metadata(
    table_name: str, app_profile_id: str | None
) -> list[tuple[str, str]]:
    """
    Create properly formatted gRPC metadata for requests.
    """
    params = []
    params.append(f"table_name={table_name}")
    if app_profile_id:
        params.append(f"app_profile_id={app_profile_id}")
    params_str = "&".join(params)
    return [("x-goog-request-params", params_str)]


def _make_request(
    table_name: str, app_profile_id: str | None, **fields: Any
) -> dict[str, Any]:
    """Build a request dictionary addressed to the table"""
    request: dict[str, Any] = {"table_name": table_name}
    if app_profile_id:
        request["app_profile_id"] = app_profile_id
    request.update(fields)
    return request


def _make_call_kwargs(
    metadata: list[tuple[str, str]],
    retry_policy: "RPCRetryPolicy",
    backoff_policy: "RPCBackoffPolicy",
) -> dict[str, Any]:
    """
    Build the keyword arguments of the next attempt. The policies set the
    attempt timeout before the call is issued.
    """
    call_kwargs: dict[str, Any] = {"timeout": None, "metadata": list(metadata)}
    retry_policy.setup(call_kwargs)
    backoff_policy.setup(call_kwargs)
    return call_kwargs


def _make_permanent_error(
    operation_name: str, failures: list[Exception]
) -> core_exceptions.GoogleAPICallError:
    """
    Build the error reported when an operation stops retrying.

    The error keeps the status code of the last failure, and its message notes
    that it may be the last of several transient failures.

    Args:
      - operation_name: the public name of the failed operation
      - failures: every failure seen by the operation, oldest first
    """
    last_failure = failures[-1]
    code = getattr(last_failure, "grpc_status_code", None)
    last_message = getattr(last_failure, "message", last_failure)
    message = (
        f"Permanent (or too many transient) errors in {operation_name}: {last_message}"
    )
    new_exc = core_exceptions.from_grpc_status(code, message, errors=list(failures))
    new_exc.__cause__ = (
        RetryExceptionGroup(failures) if len(failures) > 1 else last_failure
    )
    return new_exc
