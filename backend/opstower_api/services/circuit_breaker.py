"""File-backed circuit breaker tracking gateway availability."""

import os
from datetime import timedelta

from opstower_shared.file_store import FileStore
from opstower_shared.models import CircuitState, ProviderStateModel, utcnow


class CircuitBreaker:

    def __init__(
        self,
        provider_id: str,
        data_dir: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 30,
        half_open_max: int = 3,
    ):
        self.provider_id = provider_id
        self.state_path = os.path.join(data_dir, "providers", f"{provider_id}_circuit.json")
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max = half_open_max

    def _default_state(self) -> dict:
        return ProviderStateModel(provider_id=self.provider_id).model_dump(mode="json")

    def can_execute(self) -> bool:
        with FileStore.locked_json(self.state_path, default=self._default_state()) as data:
            state = ProviderStateModel.model_validate(data)

            if state.circuit_state == CircuitState.CLOSED:
                return True

            if state.circuit_state == CircuitState.OPEN:
                if state.opened_at and utcnow() - state.opened_at > timedelta(seconds=self.recovery_timeout):
                    state.circuit_state = CircuitState.HALF_OPEN
                    state.half_open_calls = 0
                    data.update(state.model_dump(mode="json"))
                    return True
                return False

            return state.half_open_calls < self.half_open_max

    def record_success(self) -> None:
        with FileStore.locked_json(self.state_path, default=self._default_state()) as data:
            state = ProviderStateModel.model_validate(data)
            state.success_count += 1
            state.last_success_at = utcnow()

            if state.circuit_state == CircuitState.HALF_OPEN:
                state.half_open_calls += 1
                if state.half_open_calls >= self.half_open_max:
                    state.circuit_state = CircuitState.CLOSED
                    state.failure_count = 0
                    state.half_open_calls = 0
            elif state.circuit_state == CircuitState.CLOSED:
                state.failure_count = 0

            data.update(state.model_dump(mode="json"))

    def record_failure(self) -> None:
        with FileStore.locked_json(self.state_path, default=self._default_state()) as data:
            state = ProviderStateModel.model_validate(data)
            state.failure_count += 1
            state.last_failure_at = utcnow()

            if state.circuit_state == CircuitState.HALF_OPEN:
                # A failed probe re-opens immediately
                state.circuit_state = CircuitState.OPEN
                state.opened_at = utcnow()
                state.half_open_calls = 0
            elif state.circuit_state == CircuitState.CLOSED:
                if state.failure_count >= self.failure_threshold:
                    state.circuit_state = CircuitState.OPEN
                    state.opened_at = utcnow()

            data.update(state.model_dump(mode="json"))

    def get_state(self) -> ProviderStateModel:
        data = FileStore.read_json(self.state_path, default=self._default_state())
        return ProviderStateModel.model_validate(data)
