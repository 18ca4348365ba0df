"""
基础设施：配置之外的数据库、时钟、日期约定、异常与错误处理
"""
