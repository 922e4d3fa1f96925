"""
错误响应处理模块

所有接口的错误都以统一的 JSON 结构返回，便于前端统一展示。

错误类型说明：
- invalid_request_error: 请求参数错误 (400, 413, 422)
- authentication_error: 认证失败 (401)
- permission_denied_error: 权限不足 (403)
- not_found_error: 资源不存在 (404)
- internal_server_error: 服务器内部错误 (500)
- service_unavailable_error: 服务不可用 (503)
"""

from fastapi.responses import JSONResponse
from typing import Optional


ERROR_TYPE_MAP = {
    400: "invalid_request_error",
    401: "authentication_error",
    403: "permission_denied_error",
    404: "not_found_error",
    405: "invalid_request_error",
    413: "invalid_request_error",
    422: "invalid_request_error",
    500: "internal_server_error",
    502: "api_error",
    503: "service_unavailable_error",
    504: "api_error",
}


def create_error_response(
    message: str,
    status_code: int = 500,
    error_type: Optional[str] = None,
    detail: Optional[str] = None,
) -> JSONResponse:
    """
    创建统一格式的错误响应

    参数:
        message: 面向调用方的错误描述
        status_code: HTTP 状态码
        error_type: 错误类型，为 None 时根据 status_code 推断
        detail: 内部错误细节（仅调试模式下传入）

    示例响应格式:
    {
        "error": {
            "message": "Unauthorized",
            "type": "permission_denied_error"
        }
    }
    """
    if error_type is None:
        error_type = ERROR_TYPE_MAP.get(status_code, "api_error")

    error_content = {
        "message": message,
        "type": error_type,
    }
    if detail is not None:
        error_content["detail"] = detail

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
    )
