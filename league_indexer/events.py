"""Typed decoding of raw contract logs and the derived participant/match indices.

``normalize`` is a pure function of its input: it never performs I/O and
skips malformed records rather than failing the scan.
"""

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Set, Tuple, Union

from .errors import MalformedRecordError
from .models import MatchRegisteredEvent, PredictionEvent, RawLogRecord, ResultRecordedEvent
from .util import _addr, _parse_int

PREDICTIONS_SUBMITTED = "PredictionsSubmitted"
MATCH_REGISTERED = "MatchRegistered"
RESULT_RECORDED = "ResultRecorded"

DecodedEvent = Union[PredictionEvent, MatchRegisteredEvent, ResultRecordedEvent]


def _require(record: RawLogRecord, *names: str) -> Tuple[Any, ...]:
    missing = [name for name in names if record.args.get(name) is None]
    if missing:
        raise MalformedRecordError(record.event_name, f"missing {', '.join(missing)} at block {record.block_number}")
    return tuple(record.args[name] for name in names)


def _int_field(record: RawLogRecord, name: str, value: Any) -> int:
    try:
        parsed = _parse_int(value)
    except (TypeError, ValueError) as exc:
        raise MalformedRecordError(record.event_name, f"{name}={value!r} is not an integer") from exc
    if parsed < 0:
        raise MalformedRecordError(record.event_name, f"{name}={parsed} is negative")
    return parsed


def _participant(record: RawLogRecord, value: Any) -> str:
    try:
        return _addr(value)
    except ValueError as exc:
        raise MalformedRecordError(record.event_name, str(exc)) from exc


def decode_predictions_submitted(record: RawLogRecord) -> PredictionEvent:
    user, match_ids = _require(record, "user", "matchIds")
    if not isinstance(match_ids, (list, tuple)):
        raise MalformedRecordError(record.event_name, "matchIds is not a list")
    ids = tuple(_int_field(record, "matchIds", m) for m in match_ids)
    unit_count = record.args.get("predictionsCount")
    return PredictionEvent(
        participant=_participant(record, user),
        match_ids=ids,
        unit_count=_int_field(record, "predictionsCount", unit_count) if unit_count is not None else len(ids),
        free_units_used=_int_field(record, "freeUsed", record.args.get("freeUsed", 0)),
        fee_paid=_int_field(record, "feePaid", record.args.get("feePaid", 0)),
        block_number=record.block_number,
    )


def decode_match_registered(record: RawLogRecord) -> MatchRegisteredEvent:
    match_id, start_time = _require(record, "matchId", "startTime")
    return MatchRegisteredEvent(
        match_id=_int_field(record, "matchId", match_id),
        start_time=_int_field(record, "startTime", start_time),
        block_number=record.block_number,
    )


def decode_result_recorded(record: RawLogRecord) -> ResultRecordedEvent:
    # Score-carrying records keyed only by matchId belong to MatchResultUpdated
    # and fail here on the missing user.
    user, match_id, correct = _require(record, "user", "matchId", "correct")
    if not isinstance(correct, bool):
        raise MalformedRecordError(record.event_name, f"correct={correct!r} is not a bool")
    return ResultRecordedEvent(
        participant=_participant(record, user),
        match_id=_int_field(record, "matchId", match_id),
        correct=correct,
        block_number=record.block_number,
    )


DECODERS: Dict[str, Callable[[RawLogRecord], DecodedEvent]] = {
    PREDICTIONS_SUBMITTED: decode_predictions_submitted,
    MATCH_REGISTERED: decode_match_registered,
    RESULT_RECORDED: decode_result_recorded,
}


def decode_event(record: RawLogRecord) -> DecodedEvent:
    decoder = DECODERS.get(record.event_name)
    if decoder is None:
        raise MalformedRecordError(record.event_name, "unknown event")
    return decoder(record)


@dataclass
class EventIndex:
    participants: Set[str] = field(default_factory=set)
    per_participant_units: Dict[str, Counter] = field(default_factory=dict)
    per_match_participants: Dict[int, Set[str]] = field(default_factory=dict)
    match_start_times: Dict[int, int] = field(default_factory=dict)
    recorded_pairs: Counter = field(default_factory=Counter)
    malformed: Counter = field(default_factory=Counter)

    @property
    def malformed_total(self) -> int:
        return sum(self.malformed.values())

    def duplicate_recordings(self) -> Dict[str, Dict[int, int]]:
        """participant -> matchId -> recordings beyond the first."""
        out: Dict[str, Dict[int, int]] = defaultdict(dict)
        for (participant, match_id), count in self.recorded_pairs.items():
            if count > 1:
                out[participant][match_id] = count - 1
        return dict(out)


def normalize(records: Iterable[RawLogRecord]) -> EventIndex:
    index = EventIndex()
    units: Dict[str, Counter] = defaultdict(Counter)
    by_match: Dict[int, Set[str]] = defaultdict(set)

    for record in records:
        try:
            event = decode_event(record)
        except MalformedRecordError:
            index.malformed[record.event_name] += 1
            continue

        if isinstance(event, PredictionEvent):
            index.participants.add(event.participant)
            units[event.participant].update(event.match_ids)
            for match_id in event.match_ids:
                by_match[match_id].add(event.participant)
        elif isinstance(event, MatchRegisteredEvent):
            index.match_start_times[event.match_id] = event.start_time
        elif isinstance(event, ResultRecordedEvent):
            index.recorded_pairs[(event.participant, event.match_id)] += 1

    index.per_participant_units = dict(units)
    index.per_match_participants = dict(by_match)
    return index

