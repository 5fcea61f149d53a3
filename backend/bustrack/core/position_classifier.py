"""Label each stop of a route relative to a vehicle and an optional target.

The stop line view and the map's stop markers both read these labels.
"""

from bustrack.schemas.route import ClassifiedStop, Stop, StopState
from bustrack.schemas.vehicle import Vehicle


def stop_state(sequence: int, current_sequence: int | None, target_sequence: int | None) -> StopState:
    if current_sequence is None:
        return StopState.unknown
    if sequence == current_sequence:
        return StopState.current
    if target_sequence is not None and sequence == target_sequence:
        return StopState.target
    if sequence < current_sequence:
        return StopState.passed
    # A target behind the vehicle leaves nothing "between": that side only exists ahead.
    if target_sequence is not None and current_sequence < sequence < target_sequence:
        return StopState.between
    if sequence > current_sequence:
        return StopState.upcoming
    return StopState.unknown


def classify(
    stops: list[Stop],
    current_sequence: int | None,
    target_sequence: int | None = None,
) -> list[ClassifiedStop]:
    """One state per stop, in the order given."""
    return [
        ClassifiedStop(**s.model_dump(), state=stop_state(s.sequence, current_sequence, target_sequence))
        for s in stops
    ]


def sequence_of(stops: list[Stop], stop_id: str | None) -> int | None:
    if stop_id is None:
        return None
    for s in stops:
        if s.stop_id == stop_id:
            return s.sequence
    return None


def classify_for_vehicle(
    stops: list[Stop],
    vehicle: Vehicle | None,
    target_stop_id: str | None = None,
) -> list[ClassifiedStop]:
    """Classify against a vehicle's resolved stop and a target stop id."""
    current = None
    if vehicle is not None:
        current = vehicle.resolved_sequence
        if current is None:
            current = sequence_of(stops, vehicle.resolved_stop_id)
    return classify(stops, current, sequence_of(stops, target_stop_id))
