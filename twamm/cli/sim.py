#!/usr/bin/env python3
"""
TWAMM Simulator CLI

Runs scripted scenarios against an in-memory vault and pool.

Usage:
    twamm-sim show-config [--config FILE]
    twamm-sim simulate <scenario.toml> [--config FILE] [--verbose]

A scenario is a TOML file:

    [pool]
    token0 = "USDC"
    token1 = "WETH"
    decimals0 = 6
    decimals1 = 18
    type = "LIQUID"            # optional, defaults to [pool] default_type

    [accounts.alice]
    USDC = 1_000_000_000
    WETH = 1_000_000_000

    [[steps]]
    action = "join"
    sender = "alice"
    amount0 = 100_000_000
    amount1 = 100_000_000

    [[steps]]
    action = "mine"
    blocks = 300

Step actions are the pool operation types in lower case (swap, partner_swap,
long_term_swap, join, reward, extend, exit, withdraw, cancel, fee_withdraw)
plus mine, pause_order, resume_order, pause_pool, unpause_pool, execute and
reserves.  Any step may carry ``expect_error = "ORDER_PAUSED"`` (an error
code name); the step then passes only if it fails with that code.
"""

import json
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click

from .. import __version__
from ..config import EngineConfig, load_config
from ..constants import NULL_ADDRESS, PoolType
from ..engine import Callback, OperationType, PoolOperation, TwammPool, Vault
from ..exceptions import TwammError
from ..logger import configure as configure_logging

_STEP_KEYS = ("action", "sender", "recipient", "expect_error", "label")


class ScenarioError(click.ClickException):
    """A scenario file or step is malformed, or a step did not behave as expected."""


def _load_scenario(path: str) -> Dict[str, Any]:
    try:
        with open(path, "rb") as f:
            scenario = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ScenarioError(f"{path}: {e}")
    if "pool" not in scenario:
        raise ScenarioError(f"{path}: missing [pool] section")
    return scenario


def _create_pool(vault: Vault, cfg: EngineConfig, pool_section: Dict[str, Any]) -> TwammPool:
    type_name = pool_section.get("type", cfg.pool.default_type)
    try:
        pool_type = PoolType[str(type_name).upper()]
    except KeyError:
        raise ScenarioError(f"unknown pool type {type_name!r}")
    admin = pool_section.get("admin", cfg.pool.admin)
    pool = vault.create_pool(
        pool_section.get("token0", "TOKEN0"),
        pool_section.get("token1", "TOKEN1"),
        int(pool_section.get("decimals0", 18)),
        int(pool_section.get("decimals1", 18)),
        pool_type,
        admin=admin,
        fees=cfg.fees.to_fee_config(),
    )
    if cfg.fees.fee_address != NULL_ADDRESS:
        pool.set_fee_address(admin, cfg.fees.fee_address)
    return pool


def _run_step(vault: Vault, pool: TwammPool, step: Dict[str, Any]) -> str:
    """Execute one step and return a one-line description of the outcome."""
    action = step["action"]
    sender = step.get("sender", "")

    if action == "mine":
        if "to" in step:
            return f"block {vault.mine_to(int(step['to']))}"
        return f"block {vault.mine(int(step.get('blocks', 1)))}"
    if action == "pause_order":
        pool.pause_order(sender, int(step["order_id"]))
        return f"order {step['order_id']} paused"
    if action == "resume_order":
        pool.resume_order(sender, int(step["order_id"]))
        return f"order {step['order_id']} resumed"
    if action in ("pause_pool", "unpause_pool"):
        pool.set_pause(sender, action == "pause_pool")
        return f"pool paused={pool.is_paused}"
    if action == "execute":
        last = pool.execute_virtual_orders_to_block(int(step.get("block", vault.block_number)))
        return f"virtual orders executed to block {last}"
    if action == "reserves":
        snap = pool.get_virtual_reserves()
        return f"reserves={snap.reserves} sales_rates={snap.sales_rates} at block {snap.block}"

    try:
        op_type = OperationType[action.upper()]
    except KeyError:
        raise ScenarioError(f"unknown action {action!r}")

    params = {k: v for k, v in step.items() if k not in _STEP_KEYS}
    op = PoolOperation(op_type, sender, params, step.get("recipient", ""))
    calls = {
        Callback.SWAP: vault.swap,
        Callback.JOIN: vault.join_pool,
        Callback.EXIT: vault.exit_pool,
    }
    result = calls[op.callback](pool.pool_id, op)
    return f"deltas={list(result.deltas)} {json.dumps(result.data or {}, sort_keys=True)}"


def run_scenario(scenario: Dict[str, Any], cfg: EngineConfig, echo=click.echo) -> Tuple[Vault, TwammPool]:
    """Build a vault and pool from *scenario*, run its steps and return both."""
    vault = Vault(block_number=int(scenario.get("start_block", 1)))
    pool = _create_pool(vault, cfg, scenario["pool"])
    for address, holdings in scenario.get("accounts", {}).items():
        for token, amount in holdings.items():
            vault.credit(address, token, int(amount))

    for index, step in enumerate(scenario.get("steps", []), start=1):
        if "action" not in step:
            raise ScenarioError(f"step {index}: missing action")
        label = step.get("label", step["action"])
        expected = step.get("expect_error")
        try:
            outcome = _run_step(vault, pool, step)
        except TwammError as e:
            if expected and e.code.name == expected:
                echo(click.style(f"  {index:>3} {label}: rejected as expected ({e.code.tag})", fg="yellow"))
                continue
            raise ScenarioError(f"step {index} ({label}) failed: {e}")
        if expected:
            raise ScenarioError(f"step {index} ({label}) succeeded, expected {expected}")
        echo(f"  {index:>3} {label}: {outcome}")

    return vault, pool


@click.group()
@click.version_option(version=__version__, prog_name="twamm-sim")
@click.option(
    "--config", "-c",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to twamm.toml (default: $TWAMM_CONFIG or ./twamm.toml)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str]):
    """TWAMM virtual-order engine simulator."""
    ctx.obj = load_config(config_path)


@cli.command("show-config")
@click.pass_obj
def show_config_cmd(cfg: EngineConfig):
    """Print the resolved configuration as JSON."""
    click.echo(json.dumps(cfg.to_dict(), indent=2))


@cli.command("simulate")
@click.argument("scenario_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--verbose", "-v", is_flag=True, help="Log engine activity at DEBUG level")
@click.pass_obj
def simulate_cmd(cfg: EngineConfig, scenario_file: str, verbose: bool):
    """Run a scenario file step by step.

    Examples:

        twamm-sim simulate scenarios/long_term_order.toml

        twamm-sim --config twamm.toml simulate scenario.toml -v
    """
    try:
        cfg.validate()
    except TwammError as e:
        raise click.ClickException(f"Invalid configuration: {e}")

    configure_logging(
        log_level="DEBUG" if verbose else cfg.logging.level,
        log_file=Path(cfg.logging.file) if cfg.logging.file else None,
        console_output=cfg.logging.console,
        file_output=bool(cfg.logging.file),
        force=True,
    )

    scenario = _load_scenario(scenario_file)
    click.echo(f"Running {scenario_file}")
    vault, pool = run_scenario(scenario, cfg)

    snap = pool.get_virtual_reserves()
    click.echo()
    click.echo(click.style("✓ Scenario complete", fg="green"))
    click.echo(f"Block:        {vault.block_number}")
    click.echo(f"Reserves:     {snap.reserves[0]} {pool.state.token0} / {snap.reserves[1]} {pool.state.token1}")
    click.echo(f"Sales rates:  {snap.sales_rates[0]} / {snap.sales_rates[1]}")
    click.echo(f"State root:   {pool.compute_state_root()}")


def main():
    cli()


if __name__ == "__main__":
    main()
