import os
import logging
import threading
from typing import List, Optional

import questionary
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from multisender import config
from multisender.utils.batching import plan_batches
from multisender.utils.errors import AuthorizationError, MultisenderError, error_message, humanize_error
from multisender.utils.executor import ExecutionMode, RunReport, TransferExecutor, build_batch_call
from multisender.utils.fees import estimate_run_fee, format_fee_eth
from multisender.utils.helper import FileHelper, Web3Helper
from multisender.utils.permit import PermitAuthorizationManager
from multisender.utils.recipients import (
    AssetMode, ParsedBatchRequest, build_request, csv_to_text, format_units, is_valid_address,
)
from multisender.utils.sponsored import http_requester
from multisender.utils.state import FlowState, Phase
from multisender.utils.wallet import LocalWallet, parse_private_key

console = Console()

PREVIEW_ROWS = 10


def render_preview(request: ParsedBatchRequest, cap: int = config.MAX_RECIPIENTS_PER_TX) -> None:
    result = request.result
    if not result.ok:
        console.log(f"[bold red]Invalid line:[/bold red] {result.invalid_line}")
        return
    decimals = request.unit_decimals
    table = Table(title=f"Recipients ({len(result.recipients)})")
    table.add_column("#", justify="right")
    table.add_column("Recipient")
    table.add_column(f"Amount ({request.unit_symbol})", justify="right")
    for i, (addr, raw) in enumerate(zip(result.recipients, result.raw_amounts)):
        if i >= PREVIEW_ROWS:
            break
        table.add_row(str(i), addr, raw)
    console.print(table)
    if len(result.recipients) > PREVIEW_ROWS:
        console.print(f"... and {len(result.recipients) - PREVIEW_ROWS} more")

    if result.decimals_ready:
        console.print(f"[bold]Total:[/bold] {format_units(result.total, decimals)} {request.unit_symbol}")
        batches = plan_batches(result.entries, cap)
        console.print(f"[bold]Batches:[/bold] {len(batches)} (max {cap} recipients per transaction)")


def render_report(report: RunReport, request: ParsedBatchRequest, explorer_url) -> None:
    for outcome in report.outcomes:
        console.rule(f"[bold]Batch {outcome.index + 1}/{report.batch_count}[/bold]")
        console.print(f"[bold]Tx:[/bold] {explorer_url(outcome.tx_hash)}")
        if outcome.rows:
            table = Table()
            table.add_column("#", justify="right")
            table.add_column("Recipient")
            table.add_column("Amount", justify="right")
            table.add_column("Status")
            failed_rows = [r for r in outcome.rows if not r.ok]
            shown = outcome.rows if len(outcome.rows) <= PREVIEW_ROWS else failed_rows[:PREVIEW_ROWS]
            for row in shown:
                status = "[green]Success[/green]" if row.ok else f"[red]Failed[/red] {row.reason or ''}"
                table.add_row(str(row.index), row.recipient, row.amount, status)
            console.print(table)
        if outcome.summary:
            s = outcome.summary
            unsent = format_units(s.unsent_amount, request.unit_decimals)
            console.print(f"[bold green]Success:[/bold green] {s.success_count}  "
                          f"[bold red]Failed:[/bold red] {s.fail_count}  "
                          f"[bold]Unsent:[/bold] {unsent} {request.unit_symbol}")

    if report.error:
        where = f" at batch {report.failed_batch + 1}/{report.batch_count}" if report.failed_batch is not None else ""
        console.log(f"[bold red]Stopped{where}: {report.error}[/bold red]")
    elif report.cancelled:
        console.log(f"[yellow]Stopped after {len(report.outcomes)}/{report.batch_count} batches.[/yellow]")


class MultiSendManager:
    def __init__(self, chain_config):
        self.console = console
        self.chain_config = chain_config

        # --- paths / chain config
        self.wallet_file = chain_config.WALLET_FILE
        self.recipients_file = chain_config.RECIPIENTS_FILE
        self.chain_id = int(chain_config.CHAIN_ID)
        self.chain_name = chain_config.CHAIN_NAME

        # --- logging
        logging.basicConfig(level=logging.INFO, handlers=[RichHandler(console=self.console)])
        self.logger = logging.getLogger(__name__)

        # --- helper-backed web3 wiring
        self.web3h = Web3Helper(chain_config, console=self.console)
        self.w3 = self.web3h.w3

        # --- in-memory
        self.wallet: Optional[LocalWallet] = None
        self.request: Optional[ParsedBatchRequest] = None
        self.execution_mode = ExecutionMode.STRICT
        self.use_sponsored = False

        self._run_lock = threading.Lock()
        self._cancel = threading.Event()

        # --- files
        for path_item, kind in ((self.wallet_file, 'wallet'), (self.recipients_file, 'recipients')):
            try:
                FileHelper.ensure_placeholder(path_item, kind)
            except OSError as e:
                self.console.log(f"[yellow]Could not ensure placeholder {kind} file {path_item}: {e}[/yellow]")

    # ---- wallet ----
    def load_wallet(self) -> None:
        choice = questionary.select(
            "Choose private key input method:",
            choices=["Default Path (File)", "Manual Input (CLI)"]
        ).ask()
        if choice == "Default Path (File)":
            blob = "\n".join(FileHelper.load_lines(self.wallet_file))
        else:
            blob = questionary.password("Enter the sender private key:").ask() or ""
        key = parse_private_key(blob)
        if not key:
            raise RuntimeError("No valid private key found.")
        self.wallet = LocalWallet(key)
        self.console.log(f"[green]Loaded wallet {self.wallet.address}[/green]")

    # ---- list ----
    def _read_list_text(self) -> str:
        choice = questionary.select(
            "Choose recipient list source:",
            choices=["Default Path (File)", "CSV File", "Manual Input (CLI)"]
        ).ask()
        if choice == "Default Path (File)":
            return "\n".join(FileHelper.load_lines(self.recipients_file))
        if choice == "CSV File":
            path = questionary.path("Path to CSV file:").ask() or ""
            if not os.path.exists(path):
                raise RuntimeError(f"File not found: {path}")
            return csv_to_text(FileHelper.read_text(path))
        return questionary.text("Paste recipients (address,amount per line; Esc+Enter to finish):",
                                multiline=True).ask() or ""

    def select_request(self) -> None:
        mode_label = questionary.select("Asset to send:", choices=["ETH", "ERC20 token"]).ask()
        mode = AssetMode.ETH if mode_label == "ETH" else AssetMode.ERC20

        token = decimals = symbol = None
        if mode is AssetMode.ERC20:
            token = (questionary.text("Token contract address:").ask() or "").strip()
            if not is_valid_address(token):
                raise RuntimeError(f"Invalid token address: {token}")
            decimals, symbol = self.web3h.read_token_meta(token)
            self.console.log(f"[green]Token {symbol or token}: {decimals} decimals[/green]")

        raw = self._read_list_text()
        self.request = build_request(raw, mode, token=token, decimals=decimals, symbol=symbol)

    def select_options(self) -> None:
        label = questionary.select(
            "Execution mode:",
            choices=["Strict (all or nothing)", "Best effort (skip failing recipients)"]
        ).ask()
        self.execution_mode = ExecutionMode.BEST_EFFORT if label and label.startswith("Best") else ExecutionMode.STRICT

        if self.chain_config.PAYMASTER_URL and self.chain_config.WALLET_RPC_URL:
            self.use_sponsored = bool(questionary.confirm("Try gas-sponsored sending?", default=False).ask())

    # ---- preview ----
    def show_fee_estimate(self) -> None:
        request = self.request
        if request.mode is AssetMode.ERC20:
            self.console.print("[bold]Network fee:[/bold] shown by the signer at send time for token transfers")
            return
        batches = plan_batches(request.result.entries)
        calls = [build_batch_call(request, b, self.execution_mode, self.chain_config.MULTISENDER_ADDRESS,
                                  builder_codes=self.chain_config.BUILDER_CODES) for b in batches]
        est = estimate_run_fee(self.web3h, self.chain_config, self.wallet.address, calls, request.mode)
        text = format_fee_eth(est.total)
        if not est.available and est.reason:
            text += f" ({est.reason})"
        self.console.print(f"[bold]Estimated network fee:[/bold] {text}")

    # ---- approval ----
    def ensure_token_approval(self, permits: PermitAuthorizationManager) -> bool:
        request = self.request
        total = request.result.total
        if not permits.needs_approval(request.token, total):
            return True
        amount = format_units(total, request.decimals)
        self.console.log(f"[yellow]Permit2 needs an allowance of {amount} {request.unit_symbol}[/yellow]")
        if not questionary.confirm(f"Approve {amount} {request.unit_symbol} for Permit2?").ask():
            return False
        try:
            permits.ensure_approval(request.token, total)
        except AuthorizationError as e:
            self.console.log(f"[red]Approval failed: {humanize_error(e.original or e)}[/red]")
            return False
        return True

    # ---- execution ----
    def _on_status(self, state: FlowState) -> None:
        if state.phase is Phase.FAILED:
            self.console.log(f"[red]{state.status}[/red]")
        elif state.phase is Phase.CONFIRMED:
            self.console.log(f"[green]{state.status}[/green]")
        elif state.status:
            self.console.log(f"[cyan]{state.status}[/cyan]")

    def execute(self, executor: TransferExecutor) -> Optional[RunReport]:
        # One run at a time; a second trigger while busy is ignored.
        if not self._run_lock.acquire(blocking=False):
            self.console.log("[yellow]A run is already in progress[/yellow]")
            return None
        self._cancel.clear()
        holder: List = []

        def _work():
            try:
                holder.append(executor.run(self.request, self.execution_mode,
                                           on_status=self._on_status, cancel_event=self._cancel))
            except Exception as e:
                holder.append(e)

        worker = threading.Thread(target=_work, name="multisend-run", daemon=True)
        try:
            worker.start()
            while worker.is_alive():
                try:
                    worker.join(0.5)
                except KeyboardInterrupt:
                    self.console.log("[yellow]Stopping after the current step; broadcast transactions "
                                     "cannot be withdrawn[/yellow]")
                    self._cancel.set()
        finally:
            self._run_lock.release()

        result = holder[0] if holder else None
        if isinstance(result, Exception):
            raise result
        return result

    def run(self):
        self.load_wallet()
        self.select_request()

        request = self.request
        if not request.result.ok:
            self.console.log(f"[bold red]Invalid line:[/bold red] {request.result.invalid_line}")
            return
        if not request.result.recipients:
            self.console.log("[bold red]No recipients loaded. Exiting.[/bold red]")
            return

        self.select_options()
        self.console.rule(f"[bold cyan]{self.chain_name}: multisend preview[/bold cyan]")
        render_preview(request)
        self.show_fee_estimate()

        permits = None
        if request.mode is AssetMode.ERC20:
            permits = PermitAuthorizationManager(
                self.web3h, self.wallet, on_status=lambda msg: self.console.log(f"[cyan]{msg}[/cyan]"))
            if not self.ensure_token_approval(permits):
                self.console.log("[yellow]Token not approved; nothing sent[/yellow]")
                return

        if not questionary.confirm("Proceed with these transfers?").ask():
            self.console.log("[yellow]Cancelled by user[/yellow]")
            return

        requester = http_requester(self.chain_config.WALLET_RPC_URL) if self.use_sponsored else None
        executor = TransferExecutor(self.web3h, self.wallet, self.chain_config, permits=permits,
                                    sponsor_requester=requester, use_sponsored=self.use_sponsored)
        try:
            report = self.execute(executor)
        except MultisenderError as e:
            self.console.log(f"[bold red]{error_message(e)}[/bold red]")
            return
        if report is None:
            return

        self.console.rule("[bold]Done[/bold]")
        render_report(report, request, self.web3h.explorer_url)


def select_chain():
    names = list(config.CHAINS)
    selection = questionary.select("Select chain:", choices=names).ask()
    return config.CHAINS.get(selection, config.Base)


def main():
    chain_config = select_chain()
    app = MultiSendManager(chain_config)
    app.run()


if __name__ == "__main__":
    main()
