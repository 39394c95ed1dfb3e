# dca_tracker/sheets_service.py
import json
import logging
from dataclasses import asdict
from decimal import Decimal, InvalidOperation
from datetime import datetime
from typing import TypeVar, Type, Optional, List, Any, Dict, Union, get_type_hints

import gspread
from dateutil.parser import parse as parse_datetime

from dca_tracker import config, utils
from dca_tracker.exceptions import StorageError
from dca_tracker.models import (
    BuyBandAlertData, BuyBandData, DcaZoneData, PortfolioSnapshotData, Position,
    PositionSnapshotData, TransactionData,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Карта сопоставления полей моделей и названий столбцов в таблице
FIELD_TO_SHEET_NAMES_MAP: Dict[str, List[str]] = {
    'tx_id': ['Tx_ID', 'ID'], 'portfolio_id': ['Portfolio_ID', 'Portfolio'], 'tx_type': ['Type', 'Tipo'],
    'timestamp': ['Timestamp', 'Data'], 'base_asset': ['Base_Asset'], 'base_qty': ['Base_Qty'],
    'quote_asset': ['Quote_Asset'], 'quote_qty': ['Quote_Qty'], 'value_usd': ['Value_USD'],
    'cost_basis_usd': ['Cost_Basis_USD'], 'fee_asset': ['Fee_Asset'], 'fee_qty': ['Fee_Qty'],
    'venue': ['Venue', 'Exchange'], 'notes': ['Notes'],
    'asset': ['Asset', 'Symbol'], 'qty': ['Qty'], 'cost_usd_total': ['Cost_USD_Total'], 'avg_cost_usd': ['Avg_Cost_USD'],
    'snapshot_id': ['Snapshot_ID'], 'created_at': ['Created_At'],
    'unrealized_pnl': ['Unrealized_PNL'], 'unrealized_pct': ['Unrealized_Pct'], 'positions': ['Positions_JSON'],
    'zone_id': ['Zone_ID'], 'asset_symbol': ['Asset_Symbol'], 'order': ['Order'], 'label': ['Label'],
    'price_min': ['Price_Min'], 'price_max': ['Price_Max'], 'percentual_base': ['Percentual_Base'],
    'executed': ['Executed'], 'band_id': ['Band_ID'], 'target_price': ['Target_Price'], 'quantity': ['Quantity'],
    'alert_id': ['Alert_ID'], 'symbol': ['Symbol'], 'current_price': ['Current_Price'], 'message': ['Message'],
    'notified': ['Notified'], 'read': ['Read'],
}


# --- Вспомогательные функции ---
def _find_column_index(headers: List[str], field_key: str) -> int:
    headers_lower = [h.strip().lower() for h in headers]
    possible_names = FIELD_TO_SHEET_NAMES_MAP.get(field_key.lower(), []) + [field_key]
    for name in possible_names:
        try:
            return headers_lower.index(name.lower())
        except ValueError:
            continue
    raise ValueError(f"Колонка для поля '{field_key}' не найдена в заголовках: {headers}")


def _parse_decimal(value: Any) -> Optional[Decimal]:
    if value is None or str(value).strip() == '': return None
    try:
        clean_value = str(value).replace(' ', '').replace('\u00A0', '').replace(',', '.')
        return Decimal(clean_value)
    except (InvalidOperation, TypeError):
        return None


def _parse_bool(value: Any) -> bool:
    return str(value).strip().upper() in ('TRUE', '1', 'YES', 'ДА')


def _unwrap_optional(field_type: Any) -> Any:
    """Optional[X] -> X."""
    if getattr(field_type, '__origin__', None) is Union:
        args = [a for a in field_type.__args__ if a is not type(None)]
        return args[0] if args else field_type
    return field_type


def _format_decimal(value: Optional[Decimal]) -> str:
    return str(value).replace('.', ',') if value is not None else ""


def _format_datetime(value: Optional[datetime]) -> str:
    return utils.localize(value).strftime("%Y-%m-%d %H:%M:%S") if value is not None else ""


def _format_bool(value: Optional[bool]) -> str:
    return "TRUE" if value else "FALSE" if value is not None else ""


def positions_to_json(positions: List[PositionSnapshotData]) -> str:
    return json.dumps([{k: str(v) for k, v in asdict(p).items()} for p in positions])


def positions_from_json(raw: str) -> List[PositionSnapshotData]:
    items = json.loads(raw) if raw else []
    result = []
    for item in items:
        values = {k: (v if k == 'symbol' else Decimal(v)) for k, v in item.items()}
        result.append(PositionSnapshotData(**values))
    return result


def _model_to_row(record: Any, headers: List[str]) -> List[str]:
    row = []
    record_dict = record.__dict__
    for header in headers:
        formatted_value = ""
        # Находим первое соответствующее имя поля, чтобы избежать неоднозначности
        field_name = next((f_name for f_name, names in FIELD_TO_SHEET_NAMES_MAP.items()
                           if header.lower() in [n.lower() for n in names] and f_name in record_dict), header.lower())

        if field_name in record_dict:
            value = record_dict[field_name]
            if field_name == 'positions': formatted_value = positions_to_json(value or [])
            elif isinstance(value, bool): formatted_value = _format_bool(value)
            elif isinstance(value, Decimal): formatted_value = _format_decimal(value)
            elif isinstance(value, datetime): formatted_value = _format_datetime(value)
            elif hasattr(value, 'value'): formatted_value = str(value.value)
            elif value is not None: formatted_value = str(value)
        row.append(formatted_value)
    return row


def _build_model_from_row(row: List[str], headers: List[str], model_cls: Type[T], row_num: int) -> T:
    kwargs = {}
    model_fields = get_type_hints(model_cls)
    for field_name, field_type in model_fields.items():
        if field_name == 'row_number': continue
        is_optional = type(None) in getattr(field_type, '__args__', [])
        try:
            col_idx = _find_column_index(headers, field_name)
            raw_value = row[col_idx] if col_idx < len(row) else None

            if raw_value is None or str(raw_value).strip() == '':
                if field_name == 'positions':
                    kwargs[field_name] = []
                    continue
                if is_optional:
                    kwargs[field_name] = None
                    continue
                else: raise ValueError("пустое значение для обязательного поля")

            base_type = _unwrap_optional(field_type)
            if field_name == 'positions':
                kwargs[field_name] = positions_from_json(raw_value)
            elif base_type is Decimal:
                parsed = _parse_decimal(raw_value)
                if parsed is None and not is_optional: raise ValueError(f"не удалось преобразовать '{raw_value}' в Decimal")
                kwargs[field_name] = parsed
            elif base_type is datetime:
                kwargs[field_name] = utils.localize(parse_datetime(str(raw_value)))
            elif base_type is bool:
                kwargs[field_name] = _parse_bool(raw_value)
            elif base_type is int:
                parsed_decimal = _parse_decimal(raw_value)
                if parsed_decimal is None: raise ValueError(f"не удалось преобразовать '{raw_value}' в Int")
                kwargs[field_name] = int(parsed_decimal)
            else:
                kwargs[field_name] = str(raw_value).strip()
        except ValueError as e:
            if "Колонка для поля" in str(e) and is_optional:
                kwargs[field_name] = None
                continue
            raise ValueError(f"Строка {row_num}, Поле '{field_name}': {e}") from e
    return model_cls(**kwargs)


class SheetsStore:
    """
    Хранилище на Google Sheets. Экземпляр передается явно в сервисы
    (без глобального клиента на уровне модуля).
    """

    def __init__(self, spreadsheet_id: Optional[str] = None, creds_path: Optional[str] = None,
                 client: Optional[gspread.Client] = None):
        self.spreadsheet_id = spreadsheet_id or config.SPREADSHEET_ID
        self.creds_path = creds_path or config.GOOGLE_CREDS_JSON_PATH
        self._client = client
        self._header_cache: Dict[str, List[str]] = {}

    # --- Управление кэшем и клиентом ---
    def invalidate_cache(self, sheet_name: Optional[str] = None) -> None:
        """Очищает кэш заголовков и, при необходимости, сбрасывает gspread клиент."""
        if sheet_name:
            self._header_cache.pop(sheet_name, None)
        else:
            self._header_cache = {}
            self._client = None
            logger.info("[CACHE] Весь кэш gspread и заголовков очищен. Соединение будет переустановлено.")

    def _get_client(self) -> gspread.Client:
        if self._client is None:
            try:
                self._client = gspread.service_account(filename=self.creds_path)
            except Exception as e:
                logger.critical(f"Критическая ошибка авторизации Google: {e}", exc_info=True)
                raise StorageError(f"Авторизация Google не удалась: {e}") from e
        return self._client

    def _get_sheet(self, sheet_name: str) -> Optional[gspread.Worksheet]:
        try:
            return self._get_client().open_by_key(self.spreadsheet_id).worksheet(sheet_name)
        except gspread.exceptions.WorksheetNotFound:
            logger.error(f"Лист '{sheet_name}' не найден.")
            return None
        except gspread.exceptions.GSpreadException as e:
            logger.error(f"Ошибка доступа к листу '{sheet_name}': {e}")
            return None

    def _get_headers(self, sheet_name: str) -> List[str]:
        if sheet_name not in self._header_cache:
            sheet = self._get_sheet(sheet_name)
            if not sheet: return []
            self._header_cache[sheet_name] = [str(h).strip() for h in sheet.row_values(1) if h]
        return self._header_cache[sheet_name]

    # --- Функции чтения ---
    def batch_get_records(self, sheets_to_fetch: Dict[str, Type[T]]) -> tuple[Dict[str, List[Any]], List[str]]:
        sheet_names = list(sheets_to_fetch.keys())
        all_data, all_errors = {name: [] for name in sheet_names}, []
        try:
            spreadsheet = self._get_client().open_by_key(self.spreadsheet_id)
            batch_get_results = spreadsheet.values_batch_get(sheet_names)
            value_ranges = {item['range'].split('!')[0].strip("'"): item
                            for item in batch_get_results.get('valueRanges', [])}
            for sheet_name in sheet_names:
                if sheet_name not in value_ranges:
                    all_errors.append(f"Лист '{sheet_name}' не был найден в ответе API."); continue
                all_values = value_ranges[sheet_name].get('values', [])
                if not all_values or len(all_values) < 2:
                    logger.debug(f"Лист '{sheet_name}' пуст или содержит только заголовки."); continue
                headers, data_rows, model_cls = all_values[0], all_values[1:], sheets_to_fetch[sheet_name]
                records = []
                for j, row_values in enumerate(data_rows):
                    if not any(row_values): continue
                    row_num = j + 2
                    try:
                        instance = _build_model_from_row(row_values, headers, model_cls, row_num)
                        if hasattr(instance, 'row_number'): instance.row_number = row_num
                        records.append(instance)
                    except (ValueError, TypeError, InvalidOperation) as e:
                        all_errors.append(f"Лист '{sheet_name}', строка {row_num}: {e}")
                all_data[sheet_name] = records
        except (gspread.exceptions.GSpreadException, StorageError) as e:
            error_msg = f"Критическая ошибка при пакетном чтении листов: {e}"
            logger.error(error_msg, exc_info=True)
            self.invalidate_cache()
            all_errors.append(error_msg)
        return all_data, all_errors

    def get_all_records(self, sheet_name: str, model_cls: Type[T]) -> tuple[List[T], List[str]]:
        data, errors = self.batch_get_records({sheet_name: model_cls})
        return data.get(sheet_name, []), errors

    def _get_records_or_raise(self, sheet_name: str, model_cls: Type[T]) -> List[T]:
        records, errors = self.get_all_records(sheet_name, model_cls)
        if errors:
            raise StorageError(f"Ошибки чтения листа '{sheet_name}': {errors}")
        return records

    # --- Запись ---
    def append_record(self, sheet_name: str, record: Any) -> bool:
        try:
            sheet = self._get_sheet(sheet_name)
            if not sheet: return False
            headers = self._get_headers(sheet_name)
            if not headers: logger.error(f"Не удалось добавить в '{sheet_name}': нет заголовков."); return False
            sheet.append_row(_model_to_row(record, headers), value_input_option='USER_ENTERED')
            return True
        except (gspread.exceptions.GSpreadException, StorageError) as e:
            logger.error(f"Ошибка добавления в '{sheet_name}': {e}", exc_info=True)
            self.invalidate_cache(sheet_name)
            return False

    def update_record(self, sheet_name: str, record: Any) -> bool:
        if not getattr(record, 'row_number', None): return False
        try:
            sheet = self._get_sheet(sheet_name)
            headers = self._get_headers(sheet_name)
            if not sheet or not headers: return False
            range_str = f'A{record.row_number}:{chr(ord("A") + len(headers) - 1)}{record.row_number}'
            sheet.batch_update([{'range': range_str, 'values': [_model_to_row(record, headers)]}],
                               value_input_option='USER_ENTERED')
            return True
        except (gspread.exceptions.GSpreadException, StorageError) as e:
            logger.error(f"Ошибка обновления строки {record.row_number} в '{sheet_name}': {e}", exc_info=True)
            self.invalidate_cache(sheet_name)
            return False

    def delete_row(self, sheet_name: str, row_number: int) -> bool:
        try:
            sheet = self._get_sheet(sheet_name)
            if not sheet: return False
            sheet.delete_rows(row_number)
            return True
        except (gspread.exceptions.GSpreadException, StorageError) as e:
            logger.error(f"Ошибка удаления строки {row_number} из '{sheet_name}': {e}", exc_info=True)
            self.invalidate_cache(sheet_name)
            return False

    def update_system_status(self, status: str, timestamp: datetime) -> bool:
        try:
            sheet = self._get_sheet(config.SYSTEM_STATUS_SHEET_NAME)
            if not sheet: return False
            payload = [
                {'range': config.STATUS_LAST_RUN_CELL, 'values': [[_format_datetime(timestamp)]]},
                {'range': config.STATUS_CELL, 'values': [[status]]}
            ]
            sheet.batch_update(payload, value_input_option='USER_ENTERED')
            return True
        except (gspread.exceptions.GSpreadException, StorageError) as e:
            logger.error(f"Ошибка обновления статуса системы: {e}", exc_info=True)
            return False

    # --- Транзакции ---
    def get_transactions(self, portfolio_id: str) -> List[TransactionData]:
        """Транзакции портфеля в порядке записи. Ошибка чтения -> StorageError."""
        records = self._get_records_or_raise(config.TRANSACTIONS_SHEET_NAME, TransactionData)
        return [t for t in records if t.portfolio_id == portfolio_id]

    def list_portfolio_ids(self) -> List[str]:
        records = self._get_records_or_raise(config.TRANSACTIONS_SHEET_NAME, TransactionData)
        return sorted({t.portfolio_id for t in records})

    def add_transaction(self, tx: TransactionData) -> bool:
        return self.append_record(config.TRANSACTIONS_SHEET_NAME, tx)

    # --- Производное зеркало позиций ---
    def replace_open_positions(self, portfolio_id: str, positions: List[Position]) -> bool:
        """Полностью перезаписывает строки портфеля в листе Open_Positions."""
        sheet_name = config.OPEN_POSITIONS_SHEET_NAME
        try:
            sheet = self._get_sheet(sheet_name)
            headers = self._get_headers(sheet_name)
            if not sheet or not headers: return False
            all_values = sheet.get_all_values()
            try:
                pid_col = _find_column_index(headers, 'portfolio_id')
            except ValueError as e:
                logger.error(f"Лист '{sheet_name}': {e}")
                return False
            kept = [row for row in all_values[1:] if any(row) and (len(row) <= pid_col or row[pid_col] != portfolio_id)]
            new_rows = []
            for pos in positions:
                row = _model_to_row(pos, headers)
                row[pid_col] = portfolio_id
                new_rows.append(row)
            last_col = chr(ord("A") + len(headers) - 1)
            sheet.batch_clear([f'A2:{last_col}'])
            if kept or new_rows:
                sheet.append_rows(kept + new_rows, value_input_option='USER_ENTERED')
            return True
        except (gspread.exceptions.GSpreadException, StorageError) as e:
            logger.error(f"Ошибка перезаписи позиций портфеля {portfolio_id}: {e}", exc_info=True)
            self.invalidate_cache(sheet_name)
            return False

    # --- Снимки ---
    def add_snapshot(self, snapshot: PortfolioSnapshotData) -> bool:
        return self.append_record(config.SNAPSHOTS_SHEET_NAME, snapshot)

    def get_snapshots(self, portfolio_id: str) -> List[PortfolioSnapshotData]:
        records = self._get_records_or_raise(config.SNAPSHOTS_SHEET_NAME, PortfolioSnapshotData)
        return sorted((s for s in records if s.portfolio_id == portfolio_id), key=lambda s: s.created_at)

    # --- Зоны DCA ---
    def get_zones(self, portfolio_id: str, asset_symbol: Optional[str] = None) -> List[DcaZoneData]:
        records = self._get_records_or_raise(config.DCA_ZONES_SHEET_NAME, DcaZoneData)
        zones = [z for z in records if z.portfolio_id == portfolio_id]
        if asset_symbol:
            zones = [z for z in zones if z.asset_symbol.upper() == asset_symbol.upper()]
        return sorted(zones, key=lambda z: z.order)

    def get_zone(self, zone_id: str) -> Optional[DcaZoneData]:
        records = self._get_records_or_raise(config.DCA_ZONES_SHEET_NAME, DcaZoneData)
        return next((z for z in records if z.zone_id == zone_id), None)

    def add_zone(self, zone: DcaZoneData) -> bool:
        return self.append_record(config.DCA_ZONES_SHEET_NAME, zone)

    def update_zone(self, zone: DcaZoneData) -> bool:
        return self.update_record(config.DCA_ZONES_SHEET_NAME, zone)

    def delete_zone(self, zone: DcaZoneData) -> bool:
        if not zone.row_number: return False
        return self.delete_row(config.DCA_ZONES_SHEET_NAME, zone.row_number)

    # --- Buy bands и алерты ---
    def get_pending_buy_bands(self) -> List[BuyBandData]:
        records = self._get_records_or_raise(config.BUY_BANDS_SHEET_NAME, BuyBandData)
        return [b for b in records if not b.executed]

    def get_buy_bands(self, portfolio_id: str) -> List[BuyBandData]:
        records = self._get_records_or_raise(config.BUY_BANDS_SHEET_NAME, BuyBandData)
        return sorted((b for b in records if b.portfolio_id == portfolio_id), key=lambda b: b.order or 0)

    def get_buy_band(self, band_id: str) -> Optional[BuyBandData]:
        records = self._get_records_or_raise(config.BUY_BANDS_SHEET_NAME, BuyBandData)
        return next((b for b in records if b.band_id == band_id), None)

    def add_buy_band(self, band: BuyBandData) -> bool:
        return self.append_record(config.BUY_BANDS_SHEET_NAME, band)

    def update_buy_band(self, band: BuyBandData) -> bool:
        return self.update_record(config.BUY_BANDS_SHEET_NAME, band)

    def delete_buy_band(self, band: BuyBandData) -> bool:
        if not band.row_number: return False
        return self.delete_row(config.BUY_BANDS_SHEET_NAME, band.row_number)

    def get_alerts(self, band_id: Optional[str] = None) -> List[BuyBandAlertData]:
        records = self._get_records_or_raise(config.BUY_BAND_ALERTS_SHEET_NAME, BuyBandAlertData)
        if band_id:
            records = [a for a in records if a.band_id == band_id]
        return sorted(records, key=lambda a: a.created_at)

    def has_recent_alert(self, band_id: str, since: datetime) -> bool:
        """Единственная проверка существования перед вставкой алерта."""
        since = utils.localize(since)
        return any(utils.localize(a.created_at) >= since for a in self.get_alerts(band_id))

    def add_alert(self, alert: BuyBandAlertData) -> bool:
        return self.append_record(config.BUY_BAND_ALERTS_SHEET_NAME, alert)

    def mark_alert_notified(self, alert: BuyBandAlertData) -> bool:
        stored = next((a for a in self.get_alerts(alert.band_id) if a.alert_id == alert.alert_id), None)
        if stored is None:
            logger.warning(f"Алерт {alert.alert_id} не найден для отметки доставки.")
            return False
        stored.notified = True
        return self.update_record(config.BUY_BAND_ALERTS_SHEET_NAME, stored)

    def update_alert(self, alert: BuyBandAlertData) -> bool:
        return self.update_record(config.BUY_BAND_ALERTS_SHEET_NAME, alert)
