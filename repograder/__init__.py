"""repograder - 学生代码仓批量检出与评测平台"""

__version__ = "0.3.0"
