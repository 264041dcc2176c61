"""
Application Layer: UI Dashboard
Renders the current marketplace page using 'rich' library.
"""
import datetime
from decimal import Decimal
from typing import Callable, List, Optional

from rich import box
from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from pwmarket.domain import ListingRecord, MarketView, PageResult, PaymentToken, UserMessage

TokenLookup = Callable[[str], Optional[PaymentToken]]

NATIVE_SYMBOL = "BNB"


def format_price(record: ListingRecord, token: Optional[PaymentToken]) -> str:
    """Whole-unit price with the token's decimals; exact, no float rounding"""
    decimals = token.decimals if token else 18
    symbol = token.symbol if token else (NATIVE_SYMBOL if record.pays_native else "?")
    amount = Decimal(record.price).scaleb(-decimals)
    text = format(amount.normalize(), "f")
    return f"{text} {symbol}"


def short_address(address: str) -> str:
    if len(address) <= 12:
        return address
    return f"{address[:6]}…{address[-4:]}"


class MarketplaceDashboard:
    """
    Manages the terminal UI.
    Uses rich.live to update the screen without flickering.
    """

    def __init__(self, network: str, token_lookup: TokenLookup) -> None:
        self.console = Console()
        self.network = network
        self.token_lookup = token_lookup
        self.layout = Layout()
        self.start_time = datetime.datetime.now()

        # State
        self.view = MarketView()
        self.result: Optional[PageResult] = None
        self.status_message: Optional[str] = None
        self.last_scan_time = datetime.datetime.now()
        self.logs: List[str] = []
        self.active = False
        self._live: Optional[Live] = None

    def start(self) -> None:
        """Starts the Live display context"""
        self.active = True
        self._init_layout()
        self._live = Live(self.layout, refresh_per_second=4, screen=True)
        self._live.start()

    def stop(self) -> None:
        self.active = False
        if self._live:
            self._live.stop()
            self._live = None

    def update_state(self, view: MarketView, result: Optional[PageResult], message: Optional[UserMessage] = None) -> None:
        """Stores the latest page (or failure message) and refreshes layout"""
        self.view = view
        if result is not None:
            self.result = result
        self.status_message = message.value if message else None
        self.last_scan_time = datetime.datetime.now()
        if self.active:
            self._update_layout()

    def add_log(self, message: str, level: str = "INFO") -> None:
        timestamp = datetime.datetime.now().strftime("%H:%M:%S")
        color = "green"
        if level == "WARNING": color = "yellow"
        if level == "ERROR": color = "red"

        self.logs.append(f"[{color}][{timestamp}] {message}[/{color}]")
        if len(self.logs) > 10:
            self.logs.pop(0)

        if self.active:
            self._update_layout()

    def _init_layout(self) -> None:
        self.layout.split(
            Layout(name="header", size=3),
            Layout(name="main", ratio=1),
            Layout(name="footer", size=8),
        )
        self._update_layout()

    def _update_layout(self) -> None:
        self.layout["header"].update(self._make_header())
        self.layout["main"].update(self._make_table())
        self.layout["footer"].update(self._make_log_panel())

    def _make_header(self) -> Panel:
        uptime = str(datetime.datetime.now() - self.start_time).split('.')[0]
        total_pages = self.result.total_pages if self.result else 1

        grid = Table.grid(expand=True)
        grid.add_column(justify="left", ratio=1)
        grid.add_column(justify="right", ratio=1)
        grid.add_row(
            f"[bold blue]PW Marketplace[/bold blue] | {self.network} | {self.view.quality.name} | {self.view.sort.value}",
            f"Page [bold green]{self.view.page}/{total_pages}[/bold green] | Uptime: {uptime}",
        )
        return Panel(grid, style="white on blue")

    def build_table(self) -> Table:
        table = Table(box=box.SIMPLE, expand=True)
        table.add_column("Token", style="cyan", no_wrap=True)
        table.add_column("Name", style="white")
        table.add_column("Level", justify="right")
        table.add_column("Food", justify="right")
        table.add_column("Price", justify="right", style="green")
        table.add_column("Seller", style="grey50")

        if self.status_message:
            table.add_row(self.status_message, "", "", "", "", "")
        elif self.result is None:
            table.add_row("Waiting for data...", "", "", "", "", "")
        elif self.result.is_empty:
            table.add_row(UserMessage.NO_ITEMS.value, "", "", "", "", "")
        else:
            for record in self.result.items:
                table.add_row(
                    f"#{record.token_id}",
                    record.display_name,
                    str(record.level),
                    str(record.accumulated_food),
                    format_price(record, self.token_lookup(record.payment_token)),
                    short_address(record.seller),
                )
        return table

    def _make_table(self) -> Panel:
        return Panel(self.build_table(), title="Listings", border_style="blue")

    def _make_log_panel(self) -> Panel:
        log_text = "\n".join(self.logs)
        return Panel(Text.from_markup(log_text), title="Activity Log", border_style="grey50")
