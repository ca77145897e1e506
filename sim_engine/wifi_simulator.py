"""
sim_engine/wifi_simulator.py

Synthetic Wi-Fi Fleet and Change-Request Feed.
Generates a stream of channel / transmit-power proposals against a small
fleet of access points on a simulated minute clock, so the change planner
can be exercised end to end without a real RRM controller.

The simulator, not the planner, decides whether a minute falls in peak hour.
"""

import random
from dataclasses import dataclass
from typing import Optional

from rrm_node.guardrails import ChangeRequest

CHANNELS_2G4 = (1, 6, 11)
POWER_RANGE_DB = (10, 23)
MINUTES_PER_DAY = 24 * 60


@dataclass
class FleetMember:
    ap_id: str
    channel: int
    power_db: int


@dataclass
class ProposedChange:
    ap_id: str
    request: ChangeRequest
    current_time_minutes: int
    is_peak_hour: bool


class WifiNetworkSimulator:
    """
    Simulated fleet plus a proposal generator.

    Each tick advances the clock by `step_minutes` and proposes one change for
    a random access point. Proposals are a mix of channel-only, power-only,
    combined, and no-op requests; power nudges of +/-1 dB are included on
    purpose so the hysteresis guardrail gets exercised.
    """

    def __init__(
        self,
        ap_count: int = 5,
        step_minutes: int = 30,
        peak_hours: tuple[int, int] = (17, 22),
        emergency_rate: float = 0.05,
        seed: Optional[int] = None,
    ):
        if ap_count < 1:
            raise ValueError(f"ap_count must be at least 1, got {ap_count}")
        self.step_minutes = step_minutes
        self.peak_start_hour, self.peak_end_hour = peak_hours
        self.emergency_rate = emergency_rate
        self._rng = random.Random(seed)

        self.current_time_minutes: int = 0
        self.fleet: list[FleetMember] = [
            FleetMember(
                ap_id=f"AP-{i:03d}",
                channel=self._rng.choice(CHANNELS_2G4),
                power_db=self._rng.randint(*POWER_RANGE_DB),
            )
            for i in range(1, ap_count + 1)
        ]
        # Last power the feed proposed per AP; nudges are relative to it.
        self._believed_power: dict[str, int] = {m.ap_id: m.power_db for m in self.fleet}
        self._believed_channel: dict[str, int] = {m.ap_id: m.channel for m in self.fleet}

    def is_peak_hour(self, minute: int) -> bool:
        """True if `minute` falls inside [peak_start_hour, peak_end_hour) of its simulated day."""
        hour = (minute % MINUTES_PER_DAY) // 60
        return self.peak_start_hour <= hour < self.peak_end_hour

    def _propose(self, member: FleetMember) -> ChangeRequest:
        kind = self._rng.choice(("channel", "power", "both", "noop"))
        current_channel = self._believed_channel[member.ap_id]
        current_power = self._believed_power[member.ap_id]

        new_channel = None
        new_power = None
        if kind in ("channel", "both"):
            new_channel = self._rng.choice([c for c in CHANNELS_2G4 if c != current_channel])
        if kind in ("power", "both"):
            step = self._rng.choice((-3, -2, -1, 1, 2, 3))
            low, high = POWER_RANGE_DB
            new_power = min(high, max(low, current_power + step))
        if kind == "noop":
            new_channel = current_channel

        return ChangeRequest(
            new_channel=new_channel,
            new_power_db=new_power,
            is_emergency=self._rng.random() < self.emergency_rate,
        )

    def observe(self, ap_id: str, channel: int, power_db: int) -> None:
        """Feeds the planner's post-decision state back so proposals stay realistic."""
        self._believed_channel[ap_id] = channel
        self._believed_power[ap_id] = power_db

    def run_step(self) -> ProposedChange:
        """Advances the simulated clock one step and returns the next proposal."""
        self.current_time_minutes += self.step_minutes
        member = self._rng.choice(self.fleet)
        return ProposedChange(
            ap_id=member.ap_id,
            request=self._propose(member),
            current_time_minutes=self.current_time_minutes,
            is_peak_hour=self.is_peak_hour(self.current_time_minutes),
        )


if __name__ == "__main__":
    sim = WifiNetworkSimulator(ap_count=3, seed=7)
    print("--- Synthetic fleet ---")
    for m in sim.fleet:
        print(m)
    print("\n--- Proposal feed ---")
    for _ in range(5):
        print(sim.run_step())
