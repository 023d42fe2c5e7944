"""
gRPC клиент для Stats API sing-box (experimental.v2ray_api, совместим с V2Ray/Xray StatsService).

Сообщения QueryStatsRequest / QueryStatsResponse собираются из дескриптора при импорте,
сгенерированные *_pb2 не нужны.
"""
import logging

import grpc
from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

import config
from services.exceptions import DaemonUnavailableError, StatsQueryError

logger = logging.getLogger(__name__)

_PACKAGE = "v2ray.core.app.stats.command"
QUERY_STATS_METHOD = f"/{_PACKAGE}.StatsService/QueryStats"
USER_PATTERN = "user>>>"
DIRECTIONS = ("uplink", "downlink")

_UNAVAILABLE_CODES = (grpc.StatusCode.UNAVAILABLE, grpc.StatusCode.DEADLINE_EXCEEDED)


def _build_messages():
    Field = descriptor_pb2.FieldDescriptorProto
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="app/stats/command/command.proto",
        package=_PACKAGE,
        syntax="proto3",
    )

    request = file_proto.message_type.add(name="QueryStatsRequest")
    request.field.add(name="pattern", number=1, type=Field.TYPE_STRING, label=Field.LABEL_OPTIONAL)
    request.field.add(name="reset", number=2, type=Field.TYPE_BOOL, label=Field.LABEL_OPTIONAL)

    stat = file_proto.message_type.add(name="Stat")
    stat.field.add(name="name", number=1, type=Field.TYPE_STRING, label=Field.LABEL_OPTIONAL)
    stat.field.add(name="value", number=2, type=Field.TYPE_INT64, label=Field.LABEL_OPTIONAL)

    response = file_proto.message_type.add(name="QueryStatsResponse")
    response.field.add(
        name="stat",
        number=1,
        type=Field.TYPE_MESSAGE,
        label=Field.LABEL_REPEATED,
        type_name=f".{_PACKAGE}.Stat",
    )

    pool = descriptor_pool.DescriptorPool()
    pool.Add(file_proto)
    return (
        message_factory.GetMessageClass(pool.FindMessageTypeByName(f"{_PACKAGE}.QueryStatsRequest")),
        message_factory.GetMessageClass(pool.FindMessageTypeByName(f"{_PACKAGE}.QueryStatsResponse")),
    )


QueryStatsRequest, QueryStatsResponse = _build_messages()


def parse_user_counters(stats) -> dict[tuple[str, str], int]:
    """
    user>>>{label}>>>traffic>>>{uplink|downlink} -> {(label, direction): value}.
    Остальные счётчики (inbound>>>, outbound>>>) игнорируются.
    """
    counters: dict[tuple[str, str], int] = {}
    for stat in stats:
        parts = stat.name.split(">>>")
        if len(parts) != 4 or parts[0] != "user" or parts[2] != "traffic" or parts[3] not in DIRECTIONS:
            continue
        counters[(parts[1], parts[3])] = int(stat.value)
    return counters


class StatsClient:
    """Запрос абсолютных значений счётчиков по пользователям. reset=False: счётчики не обнуляем."""

    def __init__(self, target: str = config.STATS_API_ADDR, timeout: float = config.STATS_TIMEOUT):
        self.target = target
        self.timeout = timeout

    def query_user_counters(self) -> dict[tuple[str, str], int]:
        request = QueryStatsRequest(pattern=USER_PATTERN, reset=False)
        channel = grpc.insecure_channel(self.target)
        try:
            query = channel.unary_unary(
                QUERY_STATS_METHOD,
                request_serializer=QueryStatsRequest.SerializeToString,
                response_deserializer=QueryStatsResponse.FromString,
            )
            response = query(request, timeout=self.timeout)
        except grpc.RpcError as e:
            if e.code() in _UNAVAILABLE_CODES:
                raise DaemonUnavailableError(f"stats API {self.target}: {e.code().name}") from e
            raise StatsQueryError(f"stats API {self.target}: {e.code().name} {e.details()}") from e
        finally:
            channel.close()

        counters = parse_user_counters(response.stat)
        logger.debug("Stats API %s: %d user counters", self.target, len(counters))
        return counters
