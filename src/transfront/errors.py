"""错误类型."""


class TransfrontError(Exception):
    """所有业务错误的基类."""


class ValidationError(TransfrontError):
    """输入校验失败（规则、URL、大小范围），在修改任何状态之前抛出."""


class NetworkError(TransfrontError):
    """网络错误：超时、超出大小、重定向过多、DNS 失败等.

    只在下一次定时轮询时重试，不会立即重试。
    """

    retryable = True


class EgressDenied(NetworkError):
    """目标地址属于内网/回环/链路本地地址."""


class EngineError(TransfrontError):
    """Transmission 调用错误."""


class EngineUnreachable(EngineError):
    """无法连接 Transmission."""


class EngineRejected(EngineError):
    """Transmission 拒绝了请求（例如损坏的种子文件）."""


class TorrentNotFound(EngineError):
    """Transmission 中不存在该种子."""


class StateCorruption(TransfrontError):
    """持久化存储无法读取."""


class FeedNotFound(TransfrontError):
    """Feed 不存在."""


class PermissionDenied(TransfrontError):
    """当前用户无权操作该种子."""
