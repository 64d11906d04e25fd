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

import sys

import pytest
from google.api_core import exceptions as core_exceptions


class TestRetryExceptionGroup:
    def _get_class(self):
        from kvtable.exceptions import RetryExceptionGroup

        return RetryExceptionGroup

    def _make_one(self, excs=None):
        if excs is None:
            excs = [RuntimeError("mock")]
        return self._get_class()(excs)

    @pytest.mark.parametrize(
        "exception_list,expected_message",
        [
            ([Exception()], "1 failed attempt: Exception"),
            ([Exception(), RuntimeError()], "2 failed attempts. Latest: RuntimeError"),
            (
                [Exception(), ValueError(), core_exceptions.Aborted("")],
                "3 failed attempts. Latest: Aborted",
            ),
        ],
    )
    def test_raise(self, exception_list, expected_message):
        with pytest.raises(self._get_class()) as e:
            raise self._get_class()(exception_list)
        assert str(e.value) == expected_message
        assert list(e.value.exceptions) == exception_list

    def test_raise_empty_list(self):
        with pytest.raises(ValueError) as e:
            raise self._make_one(excs=[])
        assert "non-empty sequence" in str(e.value)

    @pytest.mark.skipif(
        sys.version_info < (3, 11), reason="requires python3.11 or higher"
    )
    def test_311_traceback(self):
        import traceback

        sub_exc1 = RuntimeError("first sub exception")
        sub_exc2 = ZeroDivisionError("second sub exception")
        exc_group = self._make_one([sub_exc1, sub_exc2])
        lines = traceback.format_exception(exc_group)
        assert any("first sub exception" in line for line in lines)
        assert any("second sub exception" in line for line in lines)


class TestInvalidChunk:
    def test_is_internal_error(self):
        import grpc
        from kvtable.exceptions import InvalidChunk

        exc = InvalidChunk("bad chunk")
        assert isinstance(exc, core_exceptions.InternalServerError)
        assert exc.grpc_status_code == grpc.StatusCode.INTERNAL
