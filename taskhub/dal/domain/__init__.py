"""Domain 层：表结构、通用仓储、查询构建与事务协调。"""
