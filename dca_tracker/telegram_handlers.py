# dca_tracker/telegram_handlers.py
import logging
from typing import List

from telegram import Update
from telegram.constants import ParseMode
from telegram.ext import CallbackContext

from dca_tracker import buy_band_service, config, dca_service, utils
from dca_tracker.buy_band_checker import check_buy_bands
from dca_tracker.exceptions import LedgerError, StorageError
from dca_tracker.models import EntryPointData, TransactionType
from dca_tracker.notifier import make_notifier
from dca_tracker.position_service import aggregate_positions, get_active_positions
from dca_tracker.price_service import PriceLookup
from dca_tracker.snapshot_service import create_portfolio_snapshot, get_snapshot_history
from dca_tracker.telegram_parser import (
    merge_amount_parts, normalize_amount_string, parse_command_args_advanced, tx_kwargs_from_args,
)
from dca_tracker.transaction_logger import log_transaction

logger = logging.getLogger(__name__)

STATUS_ICONS = {'ACTIVE': '🟢', 'WAITING': '🟡', 'SKIPPED': '⚪️', 'FILLED': '✅'}


def admin_only(func):
    """Декоратор для ограничения доступа к командам только для администраторов."""
    async def wrapped(update: Update, context: CallbackContext, *args, **kwargs):
        user = update.effective_user
        admin_ids = [s.strip()
                     for s in config.TELEGRAM_ADMIN_IDS_STR.split(',') if s.strip()]
        if str(user.id) not in admin_ids:
            await update.message.reply_text("⛔️ У вас нет прав для выполнения этой команды.")
            return
        return await func(update, context, *args, **kwargs)
    return wrapped


def _store(context: CallbackContext):
    return context.bot_data['store']


def _portfolio(named_args: dict) -> str:
    return named_args.get('pf') or config.DEFAULT_PORTFOLIO_ID


async def _reply(update: Update, text: str) -> None:
    await update.message.reply_text(text, parse_mode=ParseMode.HTML)


async def start_command(update: Update, context: CallbackContext) -> None:
    user = update.effective_user
    help_text = (
        f"Привет, {user.first_name}!\n"
        "Я бот для учета криптопортфеля по средней цене и планирования DCA.\n\n"
        "<b>Доступные команды:</b>\n"
        "/help - Показать это сообщение\n"
        "--- <u>Транзакции</u> ---\n"
        "<code>/buy ASSET QTY COST_USD</code>\n"
        "<code>/sell ASSET QTY [PROCEEDS_USD]</code>\n"
        "<code>/swap FROM QTY TO QTY [value_usd:USD]</code>\n"
        "<code>/deposit ASSET QTY [cost:USD]</code>\n"
        "<code>/withdraw ASSET QTY</code>\n"
        "<code>/fee ASSET QTY</code>\n"
        "  <i>Опц. ключи: fee, fee_asset, venue, notes, date, pf</i>\n"
        "--- <u>Отчеты</u> ---\n"
        "/positions - Открытые позиции\n"
        "/wac_all - Средняя цена по всем портфелям\n"
        "/snapshot - Снимок стоимости портфеля\n"
        "<code>/snapshots [limit:N from:DATE to:DATE]</code> - История снимков\n"
        "/history ASSET - История транзакций по активу\n"
        "--- <u>DCA</u> ---\n"
        "<code>/zones ASSET</code> - План зон\n"
        "<code>/add_zone ASSET MIN MAX PCT [order:N label:TEXT]</code>\n"
        "<code>/fill_zone ZONE_ID</code>, <code>/del_zone ZONE_ID</code>\n"
        "<code>/entries ZONE_ID N</code> - Точки входа в зоне\n"
        "--- <u>Buy bands</u> ---\n"
        "/bands - Список, /check_bands - Проверить сейчас\n"
        "<code>/add_band ASSET PRICE QTY [order:N]</code>\n"
        "<code>/exec_band BAND_ID</code>, <code>/del_band BAND_ID</code>\n"
        "<code>/alerts [all]</code> - Алерты, <code>/read_alerts [ALERT_ID]</code> - Прочитано\n"
    )
    await _reply(update, help_text)


async def help_command(update: Update, context: CallbackContext) -> None:
    await start_command(update, context)


# --- Транзакции ---
@admin_only
async def tx_command(update: Update, context: CallbackContext, tx_type: str) -> None:
    """Общий обработчик для /buy, /sell, /swap, /deposit, /withdraw, /fee."""
    logger.info(f"[HANDLER] Получена команда /{tx_type.lower()} с аргументами: {context.args}")
    processed_args = merge_amount_parts(list(context.args))
    pos_args, named_args = parse_command_args_advanced(processed_args, 4)

    try:
        kwargs = tx_kwargs_from_args(tx_type, pos_args, named_args)
    except ValueError as e:
        await _reply(update, f"❌ {e}")
        return

    timestamp = utils.parse_datetime_from_args(named_args)
    success, message = log_transaction(
        _store(context), tx_type=tx_type, portfolio_id=_portfolio(named_args), timestamp=timestamp, **kwargs)
    if success:
        await _reply(update, f"✅ {tx_type} {' '.join(pos_args)} залогирована.\nTxID: <code>{message}</code>")
    else:
        await _reply(update, f"❌ {message}")


async def buy_command(update: Update, context: CallbackContext) -> None:
    await tx_command(update, context, tx_type=TransactionType.BUY.value)


async def sell_command(update: Update, context: CallbackContext) -> None:
    await tx_command(update, context, tx_type=TransactionType.SELL.value)


async def swap_command(update: Update, context: CallbackContext) -> None:
    await tx_command(update, context, tx_type=TransactionType.SWAP.value)


async def deposit_command(update: Update, context: CallbackContext) -> None:
    await tx_command(update, context, tx_type=TransactionType.DEPOSIT.value)


async def withdraw_command(update: Update, context: CallbackContext) -> None:
    await tx_command(update, context, tx_type=TransactionType.WITHDRAW.value)


async def fee_command(update: Update, context: CallbackContext) -> None:
    await tx_command(update, context, tx_type=TransactionType.FEE.value)


# --- Отчеты ---
@admin_only
async def positions_command(update: Update, context: CallbackContext) -> None:
    _, named_args = parse_command_args_advanced(list(context.args), 0)
    portfolio_id = _portfolio(named_args)
    try:
        positions = get_active_positions(_store(context), portfolio_id)
    except (LedgerError, StorageError) as e:
        await _reply(update, f"❌ Ошибка расчета позиций: {e}")
        return

    if not positions:
        await _reply(update, "Нет открытых позиций.")
        return

    reply_text = f"<u><b>💼 Открытые позиции ({portfolio_id}):</b></u>\n\n"
    for pos in positions:
        reply_text += (f"<b>{pos.asset}</b>\n"
                       f"  Кол-во: <code>{utils.format_number(pos.qty, config.QTY_DISPLAY_PRECISION)}</code>\n"
                       f"  Ср.цена: <code>{utils.format_price(pos.avg_cost_usd)}</code>\n"
                       f"  Себестоимость: <code>{utils.format_usd(pos.cost_usd_total)}</code>\n\n")
    await _reply(update, reply_text)


@admin_only
async def snapshot_command(update: Update, context: CallbackContext) -> None:
    _, named_args = parse_command_args_advanced(list(context.args), 0)
    await _reply(update, "⚙️ Создаю снимок портфеля...")
    success, message = create_portfolio_snapshot(_store(context), _portfolio(named_args), PriceLookup())
    await _reply(update, f"✅ {message}" if success else f"❌ {message}")


@admin_only
async def history_command(update: Update, context: CallbackContext) -> None:
    pos_args, named_args = parse_command_args_advanced(list(context.args), 1)
    if not pos_args:
        await _reply(update, "Использование: <code>/history ASSET</code>")
        return

    asset = pos_args[0].upper()
    try:
        transactions = _store(context).get_transactions(_portfolio(named_args))
    except StorageError as e:
        await _reply(update, f"❌ Ошибка чтения истории: {e}")
        return

    matching = [t for t in transactions if asset in (t.base_asset, t.quote_asset, t.fee_asset)]
    if not matching:
        await _reply(update, f"Нет транзакций для {asset}.")
        return

    matching.sort(key=lambda t: utils.localize(t.timestamp), reverse=True)
    reply_text = f"<u><b>📜 История для {asset} (макс. 10):</b></u>\n"
    for tx in matching[:10]:
        qty = tx.base_qty if tx.base_qty is not None else tx.fee_qty
        reply_text += (f"<pre>{tx.timestamp:%Y-%m-%d %H:%M} {tx.tx_type:<8} "
                       f"{qty} {tx.base_asset or tx.fee_asset}</pre>\n")
    await _reply(update, reply_text)


# --- DCA ---
@admin_only
async def zones_command(update: Update, context: CallbackContext) -> None:
    pos_args, named_args = parse_command_args_advanced(list(context.args), 1)
    if not pos_args:
        await _reply(update, "Использование: <code>/zones ASSET</code>")
        return

    try:
        plan = dca_service.compute_strategy(_store(context), _portfolio(named_args), pos_args[0], PriceLookup())
    except (LedgerError, StorageError) as e:
        await _reply(update, f"❌ Ошибка расчета зон: {e}")
        return

    if not plan.zones:
        await _reply(update, f"Нет зон DCA для {plan.asset_symbol}.")
        return

    reply_text = (f"<u><b>🎯 DCA {plan.asset_symbol} ({plan.portfolio_id})</b></u>\n"
                  f"Цена: <code>{utils.format_price(plan.current_price)}</code>, "
                  f"капитал: <code>{utils.format_usd(plan.capital_total)}</code>\n\n")
    for zone in plan.zones:
        icon = STATUS_ICONS.get(zone.status.value, '')
        reply_text += (f"{icon} <b>#{zone.order} {zone.label or ''}</b> {zone.status.value}\n"
                       f"  {utils.format_price(zone.price_min)} - {utils.format_price(zone.price_max)}"
                       f" ({utils.format_pct(zone.distancia_pct)})\n"
                       f"  {utils.format_pct(zone.percentual_base, add_plus_sign=False)} -> "
                       f"{utils.format_pct(zone.percentual_adjusted, add_plus_sign=False)}, "
                       f"<code>{utils.format_usd(zone.valor_usd)}</code>\n"
                       f"  <code>{zone.zone_id}</code>\n")
    if plan.unallocated_pct > 0:
        reply_text += f"\nНераспределено: {utils.format_pct(plan.unallocated_pct, add_plus_sign=False)}\n"
    for warning in plan.warnings:
        reply_text += f"⚠️ {warning}\n"
    await _reply(update, reply_text)


@admin_only
async def add_zone_command(update: Update, context: CallbackContext) -> None:
    pos_args, named_args = parse_command_args_advanced(list(context.args), 4)
    if len(pos_args) < 4:
        await _reply(update, "Использование: <code>/add_zone ASSET MIN MAX PCT [order:N label:TEXT]</code>")
        return

    price_min, price_max, pct = (normalize_amount_string(a) for a in pos_args[1:4])
    order = normalize_amount_string(named_args.get('order', '1'))
    if None in (price_min, price_max, pct, order):
        await _reply(update, "Ошибка в данных. Проверьте цены, процент и order.")
        return

    success, message = dca_service.add_zone(
        _store(context), _portfolio(named_args), pos_args[0], price_min, price_max, pct,
        order=int(order), label=named_args.get('label'))
    await _reply(update, f"✅ Зона создана: <code>{message}</code>" if success else f"❌ {message}")


@admin_only
async def fill_zone_command(update: Update, context: CallbackContext) -> None:
    if not context.args:
        await _reply(update, "Использование: <code>/fill_zone ZONE_ID</code>")
        return
    success, message = dca_service.update_zone(_store(context), context.args[0], executed=True)
    await _reply(update, "✅ Зона отмечена исполненной." if success else f"❌ {message}")


@admin_only
async def del_zone_command(update: Update, context: CallbackContext) -> None:
    if not context.args:
        await _reply(update, "Использование: <code>/del_zone ZONE_ID</code>")
        return
    success, message = dca_service.delete_zone(_store(context), context.args[0])
    await _reply(update, "✅ Зона удалена." if success else f"❌ {message}")


def format_entry_points(points: List[EntryPointData]) -> str:
    lines = [f"{p.entry_order}. {utils.format_price(p.target_price)}: {utils.format_usd(p.value_usd)}"
             for p in points]
    return "\n".join(lines)


@admin_only
async def entries_command(update: Update, context: CallbackContext) -> None:
    pos_args, named_args = parse_command_args_advanced(list(context.args), 2)
    count = normalize_amount_string(pos_args[1]) if len(pos_args) > 1 else None
    if count is None:
        await _reply(update, "Использование: <code>/entries ZONE_ID N</code>")
        return

    try:
        success, message, points = dca_service.generate_entry_points(
            _store(context), _portfolio(named_args), pos_args[0], int(count), PriceLookup())
    except (LedgerError, StorageError) as e:
        await _reply(update, f"❌ Ошибка расчета: {e}")
        return

    if not success:
        await _reply(update, f"❌ {message}")
        return
    await _reply(update, f"<b>📍 {message}</b>\n<pre>{format_entry_points(points)}</pre>")


@admin_only
async def bands_command(update: Update, context: CallbackContext) -> None:
    _, named_args = parse_command_args_advanced(list(context.args), 0)
    try:
        bands = _store(context).get_buy_bands(_portfolio(named_args))
    except StorageError as e:
        await _reply(update, f"❌ Ошибка чтения buy bands: {e}")
        return

    if not bands:
        await _reply(update, "Нет buy bands.")
        return

    reply_text = "<u><b>📉 Buy bands:</b></u>\n"
    for band in bands:
        state = "✅ исполнен" if band.executed else "⏳ ожидает"
        reply_text += (f"<b>{band.asset_symbol}</b> #{band.order}: {utils.format_price(band.target_price)}, "
                       f"{band.quantity} {band.asset_symbol} ({state})\n"
                       f"  <code>{band.band_id}</code>\n")
    await _reply(update, reply_text)


@admin_only
async def check_bands_command(update: Update, context: CallbackContext) -> None:
    try:
        result = await check_buy_bands(_store(context), PriceLookup(), notify=make_notifier(context.bot))
    except StorageError as e:
        await _reply(update, f"❌ Ошибка проверки buy bands: {e}")
        return
    await _reply(update, (f"Проверено: {result.bands_checked}, алертов: {result.alerts_created}, "
                          f"уведомлений: {result.notified}, дубликатов: {result.duplicates_skipped}."))


@admin_only
async def add_band_command(update: Update, context: CallbackContext) -> None:
    pos_args, named_args = parse_command_args_advanced(list(context.args), 3)
    if len(pos_args) < 3:
        await _reply(update, "Использование: <code>/add_band ASSET PRICE QTY [order:N]</code>")
        return

    target_price, quantity = (normalize_amount_string(a) for a in pos_args[1:3])
    order = normalize_amount_string(named_args.get('order', '0'))
    if None in (target_price, quantity, order):
        await _reply(update, "Ошибка в данных. Проверьте цену, количество и order.")
        return

    success, message = buy_band_service.add_buy_band(
        _store(context), _portfolio(named_args), pos_args[0], target_price, quantity, order=int(order))
    await _reply(update, f"✅ Buy band создан: <code>{message}</code>" if success else f"❌ {message}")


@admin_only
async def exec_band_command(update: Update, context: CallbackContext) -> None:
    if not context.args:
        await _reply(update, "Использование: <code>/exec_band BAND_ID</code>")
        return
    success, message = buy_band_service.mark_band_executed(_store(context), context.args[0])
    await _reply(update, "✅ Buy band отмечен исполненным." if success else f"❌ {message}")


@admin_only
async def del_band_command(update: Update, context: CallbackContext) -> None:
    if not context.args:
        await _reply(update, "Использование: <code>/del_band BAND_ID</code>")
        return
    success, message = buy_band_service.delete_buy_band(_store(context), context.args[0])
    await _reply(update, "✅ Buy band удален." if success else f"❌ {message}")


@admin_only
async def alerts_command(update: Update, context: CallbackContext) -> None:
    """/alerts - непрочитанные, /alerts all - все. Опц. limit:N."""
    pos_args, named_args = parse_command_args_advanced(list(context.args), 1)
    read_filter = None if pos_args and pos_args[0].lower() == 'all' else False
    limit = normalize_amount_string(named_args.get('limit', '10'))
    try:
        alerts = buy_band_service.list_alerts(_store(context), read=read_filter, limit=int(limit or 10))
    except StorageError as e:
        await _reply(update, f"❌ Ошибка чтения алертов: {e}")
        return

    if not alerts:
        await _reply(update, "Нет алертов.")
        return

    reply_text = "<u><b>🔔 Алерты buy bands:</b></u>\n"
    for alert in alerts:
        mark = "" if alert.read else "🆕 "
        reply_text += (f"{mark}{alert.created_at:%Y-%m-%d %H:%M} <b>{alert.symbol}</b>: "
                       f"{utils.format_price(alert.current_price)} / {utils.format_price(alert.target_price)}\n"
                       f"  <code>{alert.alert_id}</code>\n")
    await _reply(update, reply_text)


@admin_only
async def read_alerts_command(update: Update, context: CallbackContext) -> None:
    """/read_alerts ALERT_ID - один алерт, без аргументов - все."""
    if context.args:
        success, message = buy_band_service.set_alert_read(_store(context), context.args[0])
        await _reply(update, "✅ Алерт отмечен прочитанным." if success else f"❌ {message}")
        return

    try:
        success, updated = buy_band_service.mark_all_alerts_read(_store(context))
    except StorageError as e:
        await _reply(update, f"❌ Ошибка чтения алертов: {e}")
        return
    prefix = "✅" if success else "⚠️"
    await _reply(update, f"{prefix} Отмечено прочитанными: {updated}.")


# --- Сводные отчеты ---
@admin_only
async def wac_all_command(update: Update, context: CallbackContext) -> None:
    try:
        positions = aggregate_positions(_store(context))
    except (LedgerError, StorageError) as e:
        await _reply(update, f"❌ Ошибка расчета позиций: {e}")
        return

    if not positions:
        await _reply(update, "Нет открытых позиций.")
        return

    reply_text = "<u><b>📊 Средняя цена по всем портфелям:</b></u>\n\n"
    for pos in positions:
        reply_text += (f"<b>{pos.asset}</b>: <code>{utils.format_number(pos.qty, config.QTY_DISPLAY_PRECISION)}</code>"
                       f" @ <code>{utils.format_price(pos.avg_cost_usd)}</code>"
                       f" ({utils.format_usd(pos.cost_usd_total)})\n")
    await _reply(update, reply_text)


@admin_only
async def snapshots_command(update: Update, context: CallbackContext) -> None:
    """/snapshots [limit:N from:DATE to:DATE pf:ID]"""
    _, named_args = parse_command_args_advanced(list(context.args), 0)
    portfolio_id = _portfolio(named_args)
    limit = normalize_amount_string(named_args.get('limit', '10'))
    try:
        history = get_snapshot_history(
            _store(context), portfolio_id,
            since=utils.parse_optional_datetime(named_args.get('from')),
            until=utils.parse_optional_datetime(named_args.get('to')),
            limit=int(limit or 10))
    except StorageError as e:
        await _reply(update, f"❌ Ошибка чтения снимков: {e}")
        return

    if not history:
        await _reply(update, f"Нет снимков для {portfolio_id}.")
        return

    reply_text = f"<u><b>🗂 Снимки {portfolio_id}:</b></u>\n<pre>"
    for snapshot in history:
        reply_text += (f"{snapshot.created_at:%Y-%m-%d %H:%M} {utils.format_usd(snapshot.value_usd):>14} "
                       f"{utils.format_pct(snapshot.unrealized_pct):>9}\n")
    reply_text += "</pre>"
    await _reply(update, reply_text)
