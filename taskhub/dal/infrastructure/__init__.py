"""Infrastructure 层：数据库句柄与性能缓存。"""
