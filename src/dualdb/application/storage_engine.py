"""Storage Engine - unified entry point for the query engine.

This module provides the StorageEngine class that owns every collection
and index and exposes the relational and document operations over them:
CRUD, index management, joins and aggregation pipelines.

Usage:
    from dualdb import StorageEngine, eq, gt, Mutation

    with StorageEngine() as db:
        db.create_collection("users")
        db.insert("users", {"name": "Alice", "age": 34})
        db.create_index("users", ["age"])

        for user in db.find("users", gt("age", 30), projection=["name"]):
            print(user)

        db.update("users", eq("name", "Alice"), Mutation.inc(age=1))

Concurrency:
    Each collection is guarded by its own latch. Mutations hold it
    exclusively for their whole duration; reads hold it shared only while
    capturing a snapshot of record versions, then stream without it.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Sequence

from opentelemetry import trace

from dualdb.application.cursor import Cursor
from dualdb.application.operators import (
    FilterOperator,
    IndexScanOperator,
    JoinOperator,
    LimitOperator,
    Operator,
    ProjectOperator,
    SeqScanOperator,
    SkipOperator,
    SortOperator,
    build_pipeline,
)
from dualdb.domain.entities.collection import Collection
from dualdb.domain.entities.record import Record
from dualdb.domain.errors import (
    DuplicateCollection,
    DuplicateIdentifier,
    DuplicateIndex,
    EngineNotStarted,
    InvalidMutation,
    InvalidPredicate,
    InvalidRecord,
    UnknownCollection,
    UnknownIndex,
)
from dualdb.domain.services.collection_latch import CollectionLatch
from dualdb.domain.services.index_manager import IndexPlan, SecondaryIndex, choose_index, index_name
from dualdb.domain.services.join_engine import JoinCondition, JoinKind
from dualdb.domain.services.mutation_applier import apply_mutation, validate_mutation
from dualdb.domain.services.pipeline_engine import validate_pipeline
from dualdb.domain.services.predicate_evaluator import evaluate, validate_predicate
from dualdb.domain.value_objects.mutations import Mutation
from dualdb.domain.value_objects.pipeline import Limit, Match, Skip, Sort, SortSpec, Stage, sort_specs
from dualdb.domain.value_objects.predicates import MatchAll, Predicate
from dualdb.domain.value_objects.projection import ID_FIELD, Projection
from dualdb.domain.value_objects.values import copy_value, sort_key, validate_value
from dualdb.infrastructure.config import Config, get_config
from dualdb.infrastructure.logging import get_logger, setup_logging_from_config
from dualdb.infrastructure.metrics import MetricsRegistry, get_metrics, setup_metrics
from dualdb.infrastructure.tracing import operation_span, setup_tracing_from_config
from dualdb.ports.inbound.index_manager import IndexMetadata

SortArg = Sequence[SortSpec | tuple[str, Any] | str]


class StorageEngine:
    """In-memory store of named collections with relational and document access.

    The engine is the single owner of all collections and indexes; nothing
    is shared between engine instances. Records go in and come out as deep
    copies, so callers never hold references into the store.

    Thread Safety:
        All methods may be called from multiple threads. Mutations on one
        collection are serialised; reads never block on abandoned cursors.
    """

    def __init__(
        self,
        config: Config | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        """Initialize the storage engine.

        Args:
            config: Engine configuration. Uses the global config if None.
            metrics: Metrics registry. Uses the process default if None.
        """
        self._config = config or get_config()
        self._metrics = metrics or get_metrics()
        self._logger = get_logger(__name__)

        self._catalog_lock = threading.RLock()
        self._collections: dict[str, Collection] = {}
        self._started = False

    @classmethod
    def from_config(
        cls,
        config: Config | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> StorageEngine:
        """Build an engine with logging, tracing and metrics wired from config.

        Args:
            config: Engine configuration. Uses the global config if None.
            metrics: Metrics registry. When None, the process registry is
                used, exposed over HTTP if ``metrics_enabled`` is set.
        """
        config = config or get_config()
        observability = config.observability

        setup_logging_from_config(observability)
        setup_tracing_from_config(observability)
        if metrics is None and observability.metrics_enabled:
            metrics = setup_metrics(port=observability.metrics_port)

        return cls(config=config, metrics=metrics)

    @property
    def config(self) -> Config:
        return self._config

    @property
    def is_started(self) -> bool:
        """Check if the engine is started."""
        return self._started

    # Lifecycle

    def start(self) -> None:
        """Start the storage engine.

        Raises:
            RuntimeError: If already started.
        """
        if self._started:
            raise RuntimeError("Storage engine already started")

        from dualdb import __version__

        self._metrics.info.info({"version": __version__})
        self._metrics.collections.set(len(self._collections))
        self._started = True
        self._logger.info("engine_started", collections=len(self._collections))

    def stop(self) -> None:
        """Stop the storage engine.

        Collections stay in memory and are visible again after ``start()``.
        Open cursors keep their snapshots and can still be drained.

        Raises:
            RuntimeError: If not started.
        """
        if not self._started:
            raise RuntimeError("Storage engine not started")
        self._started = False
        self._logger.info("engine_stopped", collections=len(self._collections))

    def __enter__(self) -> StorageEngine:
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.stop()

    # Internal helpers

    def _require_started(self) -> None:
        if not self._started:
            raise EngineNotStarted()

    @contextmanager
    def _operation(self, operation: str, **attributes: Any) -> Iterator[trace.Span]:
        """Trace and time one public call, counting its outcome."""
        self._require_started()
        start = time.perf_counter()
        status = "success"
        try:
            with operation_span(operation, **attributes) as span:
                yield span
        except Exception:
            status = "error"
            raise
        finally:
            self._metrics.record_operation(operation, status, time.perf_counter() - start)

    def _collection(self, name: str) -> Collection:
        with self._catalog_lock:
            collection = self._collections.get(name)
        if collection is None:
            raise UnknownCollection(name)
        return collection

    @property
    def _lock_timeout(self) -> float:
        return self._config.query.lock_timeout_seconds

    def _plan(self, collection: Collection, predicate: Predicate) -> IndexPlan | None:
        if not self._config.query.use_indexes or isinstance(predicate, MatchAll):
            return None
        return choose_index(predicate, collection.indexes)

    def _candidates(self, collection: Collection, predicate: Predicate) -> tuple[list[Record], IndexPlan | None]:
        """Record versions that may match, in insertion order (caller holds the latch)."""
        plan = self._plan(collection, predicate)
        if plan is None:
            records = collection.snapshot()
        else:
            # insertion order, same as a full scan
            records = collection.in_scan_order(plan.index.lookup(plan))
        self._metrics.record_scan(collection.name, plan.index.name if plan else None)
        self._logger.debug(
            "access_path_chosen",
            collection=collection.name,
            index=plan.index.name if plan else None,
            candidates=len(records),
        )
        return records, plan

    def _scan(self, collection: Collection, predicate: Predicate) -> Operator:
        """Snapshot the candidates for a predicate and wrap them in a filtered scan."""
        with collection.latch.shared(self._lock_timeout):
            records, plan = self._candidates(collection, predicate)
        scan: Operator
        if plan is None:
            scan = SeqScanOperator(collection.name, records)
        else:
            scan = IndexScanOperator(collection.name, records, plan)
        if isinstance(predicate, MatchAll):
            return scan
        return FilterOperator(scan, predicate)

    def _snapshot(self, name: str) -> list[Record]:
        collection = self._collection(name)
        with collection.latch.shared(self._lock_timeout):
            return collection.snapshot()

    @staticmethod
    def _predicate(predicate: Predicate | None) -> Predicate:
        predicate = MatchAll() if predicate is None else predicate
        validate_predicate(predicate)
        return predicate

    @staticmethod
    def _validate_record(record: Any) -> dict[str, Any]:
        """Check a caller record and return a private copy of it."""
        if not isinstance(record, Mapping):
            raise InvalidRecord(f"Record must be a map, got {type(record).__name__}")
        for key, value in record.items():
            if not isinstance(key, str) or not key:
                raise InvalidRecord(f"Field names must be non-empty strings, got {key!r}")
            if "." in key:
                raise InvalidRecord(f"Field name {key!r} cannot contain '.'")
            try:
                validate_value(value)
            except TypeError as e:
                raise InvalidRecord(f"Field '{key}': {e}") from e
        if ID_FIELD in record and record[ID_FIELD] is None:
            raise InvalidRecord("_id cannot be null")
        return copy_value(dict(record))

    @staticmethod
    def _mutation(mutation: Mutation | Mapping[str, Any]) -> Mutation:
        if isinstance(mutation, Mapping):
            try:
                mutation = Mutation.from_document(mutation)
            except ValueError as e:
                raise InvalidMutation(str(e)) from e
        validate_mutation(mutation)
        return mutation

    # Collections

    def create_collection(self, name: str) -> None:
        """Create an empty collection.

        Raises:
            DuplicateCollection: If the name is taken.
            ValueError: If the name is empty.
        """
        with self._operation("create_collection", collection=name):
            if not isinstance(name, str) or not name:
                raise ValueError(f"Collection name must be a non-empty string, got {name!r}")
            with self._catalog_lock:
                if name in self._collections:
                    raise DuplicateCollection(name)
                self._collections[name] = Collection(
                    name=name,
                    latch=CollectionLatch(name, timeout=self._lock_timeout),
                    next_id=self._config.storage.auto_id_start,
                )
                self._metrics.collections.set(len(self._collections))
            self._logger.info("collection_created", collection=name)

    def drop_collection(self, name: str) -> None:
        """Remove a collection with all its records and indexes.

        Raises:
            UnknownCollection: If the collection does not exist.
        """
        with self._operation("drop_collection", collection=name):
            collection = self._collection(name)
            with collection.latch.exclusive(self._lock_timeout):
                with self._catalog_lock:
                    if self._collections.get(name) is not collection:
                        raise UnknownCollection(name)
                    del self._collections[name]
                    self._metrics.collections.set(len(self._collections))
            self._logger.info("collection_dropped", collection=name, records=len(collection))

    def list_collections(self) -> list[str]:
        """Collection names in creation order."""
        with self._operation("list_collections"):
            with self._catalog_lock:
                return list(self._collections)

    def has_collection(self, name: str) -> bool:
        with self._catalog_lock:
            return name in self._collections

    # Writes

    def insert(self, name: str, record: Mapping[str, Any]) -> Any:
        """Insert one record.

        Args:
            name: Collection name.
            record: The record; ``_id`` is assigned if absent.

        Returns:
            The record's identifier.

        Raises:
            UnknownCollection: If the collection does not exist.
            InvalidRecord: If the record is not a map of Values.
            DuplicateIdentifier: If ``_id`` is already present.
        """
        with self._operation("insert", collection=name):
            collection = self._collection(name)
            document = self._validate_record(record)
            with collection.latch.exclusive(self._lock_timeout):
                if ID_FIELD not in document:
                    document = {ID_FIELD: collection.allocate_identifier(), **document}
                elif collection.has_identifier(document[ID_FIELD]):
                    raise DuplicateIdentifier(name, document[ID_FIELD])
                stored = collection.add(document)
            self._metrics.record_mutation("insert", 1)
            self._logger.debug("record_inserted", collection=name, identifier=stored.identifier)
            return copy_value(stored.identifier)

    def insert_many(self, name: str, records: Sequence[Mapping[str, Any]]) -> list[Any]:
        """Insert a batch of records, all or nothing.

        Every record is validated, and every caller-supplied identifier is
        checked against the collection and the rest of the batch, before
        the first record is stored.

        Returns:
            Identifiers in input order.
        """
        with self._operation("insert_many", collection=name):
            collection = self._collection(name)
            documents = [self._validate_record(r) for r in records]

            with collection.latch.exclusive(self._lock_timeout):
                taken: set[tuple] = set()
                for document in documents:
                    if ID_FIELD not in document:
                        continue
                    key = sort_key(document[ID_FIELD])
                    if key in taken or collection.has_identifier(document[ID_FIELD]):
                        raise DuplicateIdentifier(name, document[ID_FIELD])
                    taken.add(key)

                prepared: list[dict[str, Any]] = []
                for document in documents:
                    if ID_FIELD not in document:
                        identifier = collection.allocate_identifier()
                        while sort_key(identifier) in taken:
                            identifier = collection.allocate_identifier()
                        document = {ID_FIELD: identifier, **document}
                    prepared.append(document)

                identifiers = [collection.add(d).identifier for d in prepared]

            self._metrics.record_mutation("insert", len(identifiers))
            self._logger.debug("records_inserted", collection=name, count=len(identifiers))
            return copy_value(identifiers)

    def update(
        self,
        name: str,
        predicate: Predicate | None,
        mutation: Mutation | Mapping[str, Any],
        multi: bool = False,
    ) -> int:
        """Apply a mutation to the first matching record, or to all of them.

        The mutation is applied to every target before any new version is
        installed, so a failure on one record leaves all records untouched.

        Args:
            name: Collection name.
            predicate: Records to update (None matches all).
            mutation: A ``Mutation`` or its ``{"$op": {...}}`` document form.
            multi: Update every match instead of the first one.

        Returns:
            Number of records whose content changed. Zero matches is not an error.

        Raises:
            InvalidPredicate: If the predicate is malformed.
            InvalidMutation: If the mutation is malformed or cannot be applied.
        """
        with self._operation("update", collection=name, multi=multi):
            collection = self._collection(name)
            predicate = self._predicate(predicate)
            mutation = self._mutation(mutation)

            with collection.latch.exclusive(self._lock_timeout):
                candidates, _ = self._candidates(collection, predicate)
                targets: list[Record] = []
                for record in candidates:
                    if evaluate(predicate, record.document):
                        targets.append(record)
                        if not multi:
                            break

                staged: list[tuple[Record, dict[str, Any]]] = []
                for record in targets:
                    document, changed = apply_mutation(record.document, mutation)
                    if changed:
                        staged.append((record, document))

                for record, document in staged:
                    collection.replace(record, document)

            self._metrics.record_mutation("update", len(staged))
            self._logger.info(
                "records_updated", collection=name, matched=len(targets), modified=len(staged)
            )
            return len(staged)

    def delete(self, name: str, predicate: Predicate | None, multi: bool = False) -> int:
        """Delete the first matching record, or all of them.

        Returns:
            Number of records removed.
        """
        with self._operation("delete", collection=name, multi=multi):
            collection = self._collection(name)
            predicate = self._predicate(predicate)

            with collection.latch.exclusive(self._lock_timeout):
                candidates, _ = self._candidates(collection, predicate)
                targets: list[Record] = []
                for record in candidates:
                    if evaluate(predicate, record.document):
                        targets.append(record)
                        if not multi:
                            break
                for record in targets:
                    collection.remove(record)

            self._metrics.record_mutation("delete", len(targets))
            self._logger.info("records_deleted", collection=name, deleted=len(targets))
            return len(targets)

    # Reads

    def find(
        self,
        name: str,
        predicate: Predicate | None = None,
        projection: Projection | Sequence[str] | Mapping[str, Any] | None = None,
        sort: SortArg | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> Cursor:
        """Query a collection.

        The predicate, projection and paging arguments are validated and the
        scan snapshot is captured before this returns; records are produced
        lazily as the cursor is consumed.

        Args:
            name: Collection name.
            predicate: Filter (None matches all).
            projection: Fields to include or exclude.
            sort: Sort keys as paths, ``(path, ASC|DESC)`` pairs or ``SortSpec``.
            skip: Records to skip after sorting.
            limit: Maximum records to return.

        Returns:
            A lazy cursor over matching records.

        Raises:
            UnknownCollection: If the collection does not exist.
            InvalidPredicate: If the predicate is malformed.
            InvalidProjection: If the projection mixes modes.
            InvalidPipelineStage: If sort, skip or limit are malformed.
        """
        with self._operation("find", collection=name):
            collection = self._collection(name)
            predicate = self._predicate(predicate)
            shape = Projection.of(projection) if projection is not None else None

            paging: list[Stage] = []
            if sort:
                paging.append(Sort(sort_specs(sort)))
            if skip:
                paging.append(Skip(skip))
            if limit is not None:
                paging.append(Limit(limit))
            validate_pipeline(paging)

            operator = self._scan(collection, predicate)
            for stage in paging:
                if isinstance(stage, Sort):
                    operator = SortOperator(operator, stage.keys)
                elif isinstance(stage, Skip):
                    operator = SkipOperator(operator, stage.count)
                elif isinstance(stage, Limit):
                    operator = LimitOperator(operator, stage.count)
            if shape is not None:
                operator = ProjectOperator(operator, shape)
            return Cursor(operator)

    def find_one(
        self,
        name: str,
        predicate: Predicate | None = None,
        projection: Projection | Sequence[str] | Mapping[str, Any] | None = None,
        sort: SortArg | None = None,
    ) -> dict[str, Any] | None:
        """First matching record, or None."""
        with self.find(name, predicate, projection=projection, sort=sort, limit=1) as cursor:
            return cursor.next_record()

    def count(self, name: str, predicate: Predicate | None = None) -> int:
        """Number of matching records."""
        with self._operation("count", collection=name):
            collection = self._collection(name)
            predicate = self._predicate(predicate)
            return sum(1 for _ in self._scan(collection, predicate))

    def get(self, name: str, identifier: Any) -> dict[str, Any] | None:
        """Point lookup by identifier.

        Returns:
            A copy of the record, or None if absent.
        """
        with self._operation("get", collection=name):
            collection = self._collection(name)
            try:
                key = sort_key(identifier)
            except TypeError as e:
                raise InvalidRecord(f"Invalid identifier: {e}") from e
            with collection.latch.shared(self._lock_timeout):
                record = collection.get(key)
            return record.to_dict() if record is not None else None

    def explain(self, name: str, predicate: Predicate | None = None) -> dict[str, Any]:
        """Describe the access path ``find`` would use for a predicate.

        Returns:
            ``{"collection", "filter", "access", ...}`` with the index name,
            bound fields and range for an index scan.
        """
        with self._operation("explain", collection=name):
            collection = self._collection(name)
            predicate = self._predicate(predicate)
            with collection.latch.shared(self._lock_timeout):
                plan = self._plan(collection, predicate)
            out: dict[str, Any] = {"collection": name, "filter": str(predicate)}
            if plan is None:
                out["access"] = "full_scan"
            else:
                out.update(plan.describe())
            return out

    # Indexes

    def create_index(self, name: str, fields: str | Sequence[str]) -> str:
        """Create a secondary index and backfill it from current records.

        Args:
            name: Collection name.
            fields: Field path, or paths in key order.

        Returns:
            The index name (the paths joined by ``_``).

        Raises:
            DuplicateIndex: If an index with the same field order exists.
            ValueError: If no fields or a malformed path is given.
        """
        if isinstance(fields, str):
            fields = [fields]
        fields = tuple(fields)
        with self._operation("create_index", collection=name, fields=",".join(map(str, fields))):
            collection = self._collection(name)
            if not fields:
                raise ValueError("An index needs at least one field")
            for path in fields:
                if not isinstance(path, str) or not path or any(not s for s in path.split(".")):
                    raise ValueError(f"Invalid index field path: {path!r}")
            if len(set(fields)) != len(fields):
                raise ValueError(f"Index fields repeat a path: {list(fields)}")

            with collection.latch.exclusive(self._lock_timeout):
                if collection.find_index(fields) is not None:
                    raise DuplicateIndex(name, fields)
                taken = {index.name for index in collection.indexes}
                index_id = base = index_name(fields)
                suffix = 1
                while index_id in taken:
                    suffix += 1
                    index_id = f"{base}_{suffix}"
                index = SecondaryIndex(
                    collection=name,
                    fields=fields,
                    name=index_id,
                    max_keys=self._config.storage.btree_max_keys,
                )
                collection.attach_index(index)

            self._logger.info(
                "index_created",
                collection=name,
                index=index.name,
                fields=list(fields),
                entries=index.metadata.num_entries,
            )
            return index.name

    def drop_index(self, name: str, index_name: str) -> None:
        """Remove an index.

        Raises:
            UnknownIndex: If no index has that name.
        """
        with self._operation("drop_index", collection=name, index=index_name):
            collection = self._collection(name)
            with collection.latch.exclusive(self._lock_timeout):
                if collection.detach_index(index_name) is None:
                    raise UnknownIndex(name, index_name)
            self._logger.info("index_dropped", collection=name, index=index_name)

    def list_indexes(self, name: str) -> list[IndexMetadata]:
        """Index metadata in declaration order."""
        with self._operation("list_indexes", collection=name):
            collection = self._collection(name)
            with collection.latch.shared(self._lock_timeout):
                return [index.metadata for index in collection.indexes]

    # Cross-collection queries

    def join(
        self,
        left_name: str,
        right_name: str,
        condition: JoinCondition,
        kind: JoinKind | str = JoinKind.INNER,
        left_predicate: Predicate | None = None,
        right_predicate: Predicate | None = None,
        left_alias: str | None = None,
        right_alias: str | None = None,
    ) -> Cursor:
        """Join two collections.

        Each side is filtered by its own predicate (using its indexes) and
        snapshotted independently.

        Args:
            left_name: Left collection.
            right_name: Right collection.
            condition: Join condition over left and right field paths.
            kind: INNER, LEFT, RIGHT or FULL.
            left_predicate: Filter applied to the left side before joining.
            right_predicate: Filter applied to the right side before joining.
            left_alias: Key of the left record in output rows.
            right_alias: Key of the right record in output rows.

        Returns:
            A lazy cursor of ``{left_alias: doc | None, right_alias: doc | None}``.
        """
        kind = JoinKind(kind.upper()) if isinstance(kind, str) else kind
        with self._operation("join", left=left_name, right=right_name, kind=kind.value):
            left = self._collection(left_name)
            right = self._collection(right_name)
            left_predicate = self._predicate(left_predicate)
            right_predicate = self._predicate(right_predicate)
            condition.validate()

            if left_alias is None and right_alias is None and left_name == right_name:
                left_alias, right_alias = "left", "right"
            left_alias = left_alias or left_name
            right_alias = right_alias or right_name
            if left_alias == right_alias:
                raise InvalidPredicate(f"Join aliases must differ, both are '{left_alias}'")

            operator = JoinOperator(
                self._scan(left, left_predicate),
                self._scan(right, right_predicate),
                condition,
                kind,
                left_alias,
                right_alias,
            )
            return Cursor(operator)

    def aggregate(self, name: str, pipeline: Sequence[Stage]) -> Cursor:
        """Run an aggregation pipeline over a collection.

        A leading ``Match`` stage is used to choose an index for the source
        scan. ``Lookup`` targets are snapshotted when this is called.

        Returns:
            A lazy cursor over the pipeline output.

        Raises:
            InvalidPipelineStage: If a stage is malformed or references an
                undefined field.
        """
        with self._operation("aggregate", collection=name, stages=len(pipeline)):
            collection = self._collection(name)
            stages = list(pipeline)
            validate_pipeline(
                stages,
                collection_exists=self.has_collection,
                max_stages=self._config.query.max_pipeline_stages,
            )

            if stages and isinstance(stages[0], Match):
                source = self._scan(collection, stages[0].predicate)
                stages = stages[1:]
            else:
                source = self._scan(collection, MatchAll())
            return Cursor(build_pipeline(source, stages, self._snapshot))

    # Monitoring

    def stats(self) -> dict[str, Any]:
        """Get engine statistics.

        Returns:
            Dictionary with per-collection record and index counts.
        """
        with self._catalog_lock:
            collections = list(self._collections.values())
        return {
            "started": self._started,
            "collections": {
                c.name: {
                    "records": len(c),
                    "next_id": c.next_id,
                    "indexes": {
                        meta.name: {
                            "fields": list(meta.fields),
                            "keys": meta.num_keys,
                            "entries": meta.num_entries,
                            "height": meta.height,
                            "scans": meta.scans,
                        }
                        for meta in (index.metadata for index in c.indexes)
                    },
                }
                for c in collections
            },
        }
