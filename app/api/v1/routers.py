from fastapi import APIRouter
from app.api.v1 import disassemble

api_router = APIRouter()

# 资产拆解（拆解执行 / 预览 / 操作状态）
api_router.include_router(disassemble.router, tags=["disassemble"])
