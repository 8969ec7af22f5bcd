"""Heuristic region classification from free-text profile fields."""

import re
from enum import Enum
from typing import Optional

from contributor_sync.models.user import UserProfile


class Region(str, Enum):
    CHINA = "china"
    UNKNOWN = "unknown"


# Country names and pinyin for mainland cities and provinces
CHINA_KEYWORDS = (
    "china",
    "prc",
    "zhongguo",
    "beijing",
    "peking",
    "shanghai",
    "shenzhen",
    "guangzhou",
    "hangzhou",
    "chengdu",
    "wuhan",
    "nanjing",
    "xi'an",
    "xian",
    "suzhou",
    "tianjin",
    "chongqing",
    "hefei",
    "changsha",
    "xiamen",
    "qingdao",
    "dalian",
    "jinan",
    "zhengzhou",
    "shenyang",
    "harbin",
    "kunming",
    "fuzhou",
    "ningbo",
    "dongguan",
    "zhuhai",
    "wuxi",
    "nanchang",
    "guiyang",
    "lanzhou",
    "guangdong",
    "zhejiang",
    "jiangsu",
    "sichuan",
    "hubei",
    "hunan",
    "fujian",
    "shandong",
    "henan",
    "hebei",
    "anhui",
    "liaoning",
    "shaanxi",
    "yunnan",
)

# Han-script names: matched as plain substrings since Han text has no word breaks
CHINA_HAN_KEYWORDS = (
    "中国",
    "中國",
    "中华人民共和国",
    "北京",
    "上海",
    "深圳",
    "广州",
    "杭州",
    "成都",
    "武汉",
    "南京",
    "西安",
    "苏州",
    "天津",
    "重庆",
    "合肥",
    "长沙",
    "厦门",
    "青岛",
    "大连",
    "济南",
    "郑州",
    "沈阳",
    "哈尔滨",
    "昆明",
    "福州",
    "宁波",
    "东莞",
    "珠海",
    "广东",
    "浙江",
    "江苏",
    "四川",
    "湖北",
    "湖南",
    "福建",
    "山东",
)

# Mail providers whose users are overwhelmingly in mainland China
CHINA_EMAIL_DOMAINS = (
    "qq.com",
    "foxmail.com",
    "163.com",
    "126.com",
    "yeah.net",
    "sina.com",
    "sina.cn",
    "sohu.com",
    "aliyun.com",
    "139.com",
)

_LATIN_PATTERN = re.compile(
    r"(?<![a-z])(?:" + "|".join(re.escape(k) for k in CHINA_KEYWORDS) + r")(?![a-z])"
)


def classify(location: Optional[str]) -> Region:
    """Classify a free-text location.

    Lower-cases and trims the text, then looks for country, city, province
    and Han-script cues. Returns Region.UNKNOWN for empty input or no match.
    Pure and total: never raises, same input always gives the same result.
    """
    if not location:
        return Region.UNKNOWN

    text = location.strip().lower()
    if not text:
        return Region.UNKNOWN

    if any(keyword in text for keyword in CHINA_HAN_KEYWORDS):
        return Region.CHINA
    if _LATIN_PATTERN.search(text):
        return Region.CHINA
    return Region.UNKNOWN


def classify_email(email: Optional[str]) -> Region:
    """Classify by mail provider domain."""
    if not email or "@" not in email:
        return Region.UNKNOWN
    domain = email.rsplit("@", 1)[1].strip().lower()
    if domain in CHINA_EMAIL_DOMAINS:
        return Region.CHINA
    return Region.UNKNOWN


def classify_contact(location: Optional[str], email: Optional[str]) -> Region:
    """Location first, then the email domain."""
    region = classify(location)
    if region is not Region.UNKNOWN:
        return region
    return classify_email(email)


def classify_profile(profile: UserProfile) -> Region:
    return classify_contact(profile.location, profile.email)
