"""Application 层：配置、错误代码、仓储注册中心与生命周期。

子模块按需导入，本包不做聚合导出以避免循环依赖。
"""
