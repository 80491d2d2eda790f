"""Модели для YAML-конфига зеркалирования.

Этот файл описывает структуру YAML-файла, который пользователь
передаёт через --config. Pydantic проверяет что все обязательные
поля на месте и что ссылки на образы разбираются.

Пример YAML-файла целиком:
    images:
      - from: alpine:3.19
        to: myregistry.example.com/mirror/alpine:3.19
    registries:
      hub.docker.com:
        username: bot
        password: secret
      myregistry.example.com:
        username: robot
        password: token
    mirrors:
      - from: quay.io
        to: myregistry.example.com
        namespace: mirrored
"""

from pydantic import BaseModel, Field, field_validator, model_validator

from registry_mirror.models.reference import parse_reference

# Canonical credentials key for the public default registry.
DOCKER_HUB = "hub.docker.com"


class Registry(BaseModel):
    """Учётные данные одного реестра."""

    username: str = ""
    password: str = ""


class Image(BaseModel):
    """Явная инструкция: скопировать образ from → to.

    Пример в YAML:
        images:
          - from: quay.io/foo/bar:v1
            to: myhost.example/foo/bar:v1
    """

    source: str = Field(alias="from")
    destination: str = Field(alias="to")

    # populate_by_name=True - разрешает и Python-имя (source), и YAML-имя (from).
    # frozen - образ не меняется после загрузки.
    model_config = {"populate_by_name": True, "frozen": True}

    @field_validator("source", "destination")
    @classmethod
    def _must_parse(cls, value: str) -> str:
        parse_reference(value)
        return value


class MirrorRule(BaseModel):
    """Зеркалирование целого реестра или namespace.

    Пример в YAML:
        mirrors:
          - from: hub.docker.com/library
            to: myregistry.example.com
            namespace: dockerhub
    """

    source: str = Field(alias="from")
    destination: str = Field(alias="to")
    namespace: str = ""

    model_config = {"populate_by_name": True, "frozen": True}

    @field_validator("source", "destination")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("namespace")
    @classmethod
    def _strip_slashes(cls, value: str) -> str:
        return value.strip().strip("/")

    @model_validator(mode="after")
    def _destination_must_parse(self):
        # Discovered paths are appended to destination/namespace, so check a sample one.
        prefix = f"{self.destination}/{self.namespace}" if self.namespace else self.destination
        parse_reference(f"{prefix}/x")
        return self


class MirrorConfig(BaseModel):
    """Корневая модель конфига.

    Все три секции необязательны; пустой список образов проверяется
    уже при запуске, после раскрытия mirrors.
    """

    images: list[Image] = Field(default_factory=list)
    registries: dict[str, Registry] = Field(default_factory=dict)
    mirrors: list[MirrorRule] = Field(default_factory=list)

    @field_validator("images", "mirrors", mode="before")
    @classmethod
    def _none_is_empty_list(cls, value):
        return [] if value is None else value

    @field_validator("registries", mode="before")
    @classmethod
    def _none_is_empty_dict(cls, value):
        return {} if value is None else value
