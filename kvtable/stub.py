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
The RPC surface consumed by the table operations.

TableStub is the abstract interface, with one method per RPC. Unary methods
return the response message or raise a GoogleAPICallError. Server-streaming
methods return a StreamingReadRpc, a pull-based handle over the responses.

DefaultTableStub implements the interface on top of the generated gRPC
transport for the google.bigtable.v2.Bigtable service.
"""
from __future__ import annotations

import abc
from typing import Any, Callable, Iterator, Sequence, TypeVar, TYPE_CHECKING

import grpc
from google.api_core import exceptions as core_exceptions
from google.cloud.bigtable_v2.types import bigtable as bigtable_types

if TYPE_CHECKING:
    from google.api_core import operations_v1
    from google.longrunning import operations_pb2

T = TypeVar("T")

Metadata = Sequence[tuple[str, str]]


class StreamingReadRpc(Iterator[T]):
    """
    Pull-based handle over the responses of a server-streaming call.

    Errors raised by the underlying gRPC call are translated into
    google.api_core exceptions as they are pulled.
    """

    def __init__(self, call: Any):
        self._call = call
        self._iterator = iter(call)
        self._done = False

    def __iter__(self) -> StreamingReadRpc[T]:
        return self

    def __next__(self) -> T:
        if self._done:
            raise StopIteration
        try:
            return next(self._iterator)
        except StopIteration:
            self._done = True
            raise
        except grpc.RpcError as exc:
            self._done = True
            raise core_exceptions.from_grpc_error(exc) from exc

    def read(self) -> T | None:
        """Returns the next response, or None once the stream is exhausted"""
        return next(self, None)

    def cancel(self) -> None:
        """
        Stop the stream. Responses not yet pulled are discarded.
        """
        if self._done:
            return
        self._done = True
        cancel_fn = getattr(self._call, "cancel", None)
        if cancel_fn is None:
            cancel_fn = getattr(self._call, "close", None)
        if cancel_fn is not None:
            cancel_fn()


class TableStub(abc.ABC):
    """
    One method per RPC of the table data service.

    Every method takes a request dictionary shaped like the corresponding
    google.bigtable.v2 request message, plus the per-attempt timeout and
    routing metadata.
    """

    @abc.abstractmethod
    def mutate_row(
        self,
        request: dict[str, Any],
        *,
        timeout: float | None = None,
        metadata: Metadata = (),
    ) -> bigtable_types.MutateRowResponse:
        raise NotImplementedError

    @abc.abstractmethod
    def mutate_rows(
        self,
        request: dict[str, Any],
        *,
        timeout: float | None = None,
        metadata: Metadata = (),
    ) -> StreamingReadRpc[bigtable_types.MutateRowsResponse]:
        raise NotImplementedError

    @abc.abstractmethod
    def read_rows(
        self,
        request: dict[str, Any],
        *,
        timeout: float | None = None,
        metadata: Metadata = (),
    ) -> StreamingReadRpc[bigtable_types.ReadRowsResponse]:
        raise NotImplementedError

    @abc.abstractmethod
    def check_and_mutate_row(
        self,
        request: dict[str, Any],
        *,
        timeout: float | None = None,
        metadata: Metadata = (),
    ) -> bigtable_types.CheckAndMutateRowResponse:
        raise NotImplementedError

    @abc.abstractmethod
    def read_modify_write_row(
        self,
        request: dict[str, Any],
        *,
        timeout: float | None = None,
        metadata: Metadata = (),
    ) -> bigtable_types.ReadModifyWriteRowResponse:
        raise NotImplementedError

    @abc.abstractmethod
    def sample_row_keys(
        self,
        request: dict[str, Any],
        *,
        timeout: float | None = None,
        metadata: Metadata = (),
    ) -> StreamingReadRpc[bigtable_types.SampleRowKeysResponse]:
        raise NotImplementedError

    def get_operation(
        self,
        request: dict[str, Any],
        *,
        timeout: float | None = None,
        metadata: Metadata = (),
    ) -> "operations_pb2.Operation":
        """Poll a long-running operation."""
        raise NotImplementedError(
            "long-running operations are not supported by this stub"
        )

    def cancel_operation(
        self,
        request: dict[str, Any],
        *,
        timeout: float | None = None,
        metadata: Metadata = (),
    ) -> None:
        """Cancel a long-running operation."""
        raise NotImplementedError(
            "long-running operations are not supported by this stub"
        )


class DefaultTableStub(TableStub):
    """
    TableStub backed by a generated gRPC transport.

    Args:
      - transport: an object exposing the service methods as gRPC
            multi-callables, such as BigtableGrpcTransport
      - operations_client: an api_core OperationsClient, required only for
            get_operation and cancel_operation
    """

    def __init__(
        self,
        transport: Any,
        operations_client: "operations_v1.OperationsClient" | None = None,
    ):
        self._transport = transport
        self._operations_client = operations_client

    @staticmethod
    def _unary(
        fn: Callable[..., Any], request: Any, timeout: float | None, metadata: Metadata
    ) -> Any:
        try:
            return fn(request, timeout=timeout, metadata=list(metadata))
        except grpc.RpcError as exc:
            raise core_exceptions.from_grpc_error(exc) from exc

    def _streaming(
        self,
        fn: Callable[..., Any],
        request: Any,
        timeout: float | None,
        metadata: Metadata,
    ) -> StreamingReadRpc[Any]:
        return StreamingReadRpc(self._unary(fn, request, timeout, metadata))

    def mutate_row(self, request, *, timeout=None, metadata=()):
        return self._unary(
            self._transport.mutate_row,
            bigtable_types.MutateRowRequest(request),
            timeout,
            metadata,
        )

    def mutate_rows(self, request, *, timeout=None, metadata=()):
        return self._streaming(
            self._transport.mutate_rows,
            bigtable_types.MutateRowsRequest(request),
            timeout,
            metadata,
        )

    def read_rows(self, request, *, timeout=None, metadata=()):
        return self._streaming(
            self._transport.read_rows,
            bigtable_types.ReadRowsRequest(request),
            timeout,
            metadata,
        )

    def check_and_mutate_row(self, request, *, timeout=None, metadata=()):
        return self._unary(
            self._transport.check_and_mutate_row,
            bigtable_types.CheckAndMutateRowRequest(request),
            timeout,
            metadata,
        )

    def read_modify_write_row(self, request, *, timeout=None, metadata=()):
        return self._unary(
            self._transport.read_modify_write_row,
            bigtable_types.ReadModifyWriteRowRequest(request),
            timeout,
            metadata,
        )

    def sample_row_keys(self, request, *, timeout=None, metadata=()):
        return self._streaming(
            self._transport.sample_row_keys,
            bigtable_types.SampleRowKeysRequest(request),
            timeout,
            metadata,
        )

    def get_operation(self, request, *, timeout=None, metadata=()):
        if self._operations_client is None:
            return super().get_operation(request, timeout=timeout, metadata=metadata)
        return self._unary(
            lambda name, **kwargs: self._operations_client.get_operation(
                name, retry=None, **kwargs
            ),
            request["name"],
            timeout,
            metadata,
        )

    def cancel_operation(self, request, *, timeout=None, metadata=()):
        if self._operations_client is None:
            return super().cancel_operation(request, timeout=timeout, metadata=metadata)
        return self._unary(
            lambda name, **kwargs: self._operations_client.cancel_operation(
                name, retry=None, **kwargs
            ),
            request["name"],
            timeout,
            metadata,
        )


def create_default_stub(
    channel: grpc.Channel,
    operations_client: "operations_v1.OperationsClient" | None = None,
) -> DefaultTableStub:
    """
    Build a DefaultTableStub that sends requests over `channel`
    """
    from google.cloud.bigtable_v2.services.bigtable.transports.grpc import (
        BigtableGrpcTransport,
    )

    return DefaultTableStub(
        BigtableGrpcTransport(channel=channel), operations_client=operations_client
    )
