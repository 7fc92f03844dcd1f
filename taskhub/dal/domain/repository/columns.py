"""列注册表。

每个仓储在构造时为其表建立字段名到列描述的映射，
非法字段在构建查询前立即报错。
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy import Column, Table

from taskhub.dal.domain.exceptions import InvalidFieldError


class ColumnRegistry:
    """表字段注册表。"""

    def __init__(self, table: Table, primary_key: str = "id") -> None:
        self._table = table
        self._columns: dict[str, Column[Any]] = {column.key: column for column in table.columns}
        if primary_key not in self._columns:
            raise InvalidFieldError(table.name, primary_key, f"表 {table.name} 不存在主键字段 '{primary_key}'")
        self._primary_key = primary_key

    @property
    def table(self) -> Table:
        return self._table

    @property
    def table_name(self) -> str:
        return self._table.name

    @property
    def primary_key(self) -> Column[Any]:
        return self._columns[self._primary_key]

    @property
    def primary_key_name(self) -> str:
        return self._primary_key

    @property
    def names(self) -> list[str]:
        return list(self._columns)

    def __contains__(self, field: object) -> bool:
        return field in self._columns

    def get(self, field: str) -> Column[Any]:
        """按字段名获取列，字段不存在时抛出 InvalidFieldError。"""
        try:
            return self._columns[field]
        except KeyError:
            raise InvalidFieldError(self._table.name, field) from None

    def validate(self, fields: Iterable[str]) -> None:
        for field in fields:
            self.get(field)

    def validate_data(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """校验写入数据的字段并返回副本。"""
        self.validate(data.keys())
        return dict(data)

    def apply_defaults(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """为缺失字段填充列上的 Python 默认值。"""
        row = dict(data)
        for name, column in self._columns.items():
            if name in row or column.default is None:
                continue
            default = column.default
            if default.is_callable:
                row[name] = default.arg(None)
            elif default.is_scalar:
                row[name] = default.arg
        return row


__all__ = [
    "ColumnRegistry",
]
