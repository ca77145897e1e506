"""
rrm_node/

SafeRRM Node: guardrail-gated radio configuration changes for Wi-Fi access points.

Modules:
    config          - GuardrailPolicy parameters and environment overrides.
    state_store     - NetworkStateStore with per-access-point locking.
    guardrails      - Time-window, change-budget and hysteresis rule engine.
    change_planner  - evaluate_and_apply: admission plus atomic state update.
    decision_ledger - Append-only JSONL audit trail of every decision.
"""
